"""
市场管理后台应用入口：FastAPI 应用实例、路由注册、生命周期和后台任务。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：启动时创建数据存储客户端和变更通知中心，启动变更检测任务。"""
    from app.datastore import create_store
    from app.services.change_notifier import ChangeNotifier, watch_changes

    app.state.store = create_store()
    app.state.notifier = ChangeNotifier()
    logger.info("数据存储客户端已创建: %s", app.state.store.base_url)

    tasks = []
    if os.environ.get("TESTING") != "1":
        interval = float(os.environ.get("CHANGE_POLL_INTERVAL", "15"))
        tasks.append(asyncio.create_task(
            watch_changes(app.state.store, app.state.notifier, interval)
        ))
        logger.info("后台任务已启动：数据变更检测（间隔 %.0f 秒）", interval)

    yield

    for t in tasks:
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass
    await app.state.store.aclose()


app = FastAPI(title="Marketplace Admin", description="数字商品市场管理后台", lifespan=lifespan)

# ── CORS 中间件（开发环境跨域） ────────────────────────────

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# ── 路由注册 ──────────────────────────────────────────────

from app.routes.admin import router as admin_router

app.include_router(admin_router)


# ── 健康检查 ──────────────────────────────────────────────

@app.get("/health")
async def health_check():
    return {"status": "ok"}
