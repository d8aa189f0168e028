"""
数据存储连接管理：进程启动时创建唯一的客户端实例，通过 FastAPI 依赖项注入到路由。
"""

import os

from dotenv import load_dotenv
from fastapi import Request

from app.services.change_notifier import ChangeNotifier
from app.services.datastore_client import DataStoreClient

load_dotenv()


def create_store() -> DataStoreClient:
    """根据环境变量创建数据存储客户端。"""
    url = os.getenv("SUPABASE_URL", "")
    key = os.getenv("SUPABASE_KEY", "")
    if not url or not key:
        raise RuntimeError("缺少数据存储配置: SUPABASE_URL / SUPABASE_KEY")
    timeout = float(os.getenv("DATASTORE_TIMEOUT", "10"))
    return DataStoreClient(url, key, timeout=timeout)


def get_store(request: Request) -> DataStoreClient:
    """FastAPI 依赖项：返回应用生命周期内共享的客户端。"""
    return request.app.state.store


def get_notifier(request: Request) -> ChangeNotifier:
    """FastAPI 依赖项：返回应用内的变更通知中心。"""
    return request.app.state.notifier
