"""
管理后台路由：认证（登录）、仪表盘、商品审核、用户与创作者管理、提现处理、数据变更通知。
"""

import logging
import os
import secrets

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from app.datastore import get_notifier, get_store
from app.services.auth import authenticate, get_current_admin
from app.services.change_notifier import WATCHED_TABLES, ChangeNotifier
from app.services.dashboard_service import DASHBOARD_TABLES, DashboardService, stream_dashboard
from app.services.datastore_client import DataStoreClient, DataStoreError
from app.services.file_access import FILE_FIELDS, FileAccessError, resolve_file
from app.services.filters import filter_products, filter_users, filter_withdrawals
from app.services.moderation import ModerationError
from app.services.product_service import ProductService
from app.services.user_service import UserService
from app.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin")


class LoginRequest(BaseModel):
    username: str
    password: str


class StatusRequest(BaseModel):
    status: str


@router.post("/auth/login")
async def login(body: LoginRequest):
    """
    管理员登录。

    接收 JSON {username, password}，
    成功返回 {code: 1, token: "..."}，
    失败返回 {code: -1, msg: "..."}。
    """
    try:
        result = authenticate(body.username, body.password)
        return JSONResponse(content=result)
    except ValueError as e:
        return JSONResponse(content={"code": -1, "msg": str(e)})


# ── 仪表盘 ────────────────────────────────────────────────


@router.get("/dashboard")
async def dashboard(
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
):
    """管理后台仪表盘：统计卡片 + 近 7 天收入趋势 + 最近动态。"""
    data = await DashboardService(store).load()
    return JSONResponse(content={"code": 1, **data})


@router.get("/dashboard/stream")
async def dashboard_stream(
    request: Request,
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """仪表盘实时推送（SSE）：相关表有变更时重新计算并推送，断开连接时取消订阅。"""
    subscription = notifier.subscribe(DASHBOARD_TABLES)

    async def events():
        try:
            async for chunk in stream_dashboard(
                DashboardService(store), subscription, request.is_disconnected,
            ):
                yield chunk
        finally:
            notifier.unsubscribe(subscription)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ── 商品审核 ────────────────────────────────────────────────


@router.get("/products")
async def product_list(
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    search: str | None = Query(None),
    status: str | None = Query(None),
):
    """商品列表（支持关键字和状态筛选），统计基于全部商品。"""
    svc = ProductService(store)
    products = await svc.list_products()
    return JSONResponse(content={
        "code": 1,
        "products": filter_products(products, search, status),
        "stats": svc.stats(products),
    })


@router.put("/products/{product_id}/status")
async def update_product_status(
    product_id: str,
    body: StatusRequest,
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """修改商品审核状态，成功后重新查询商品列表返回。"""
    svc = ProductService(store, notifier)
    try:
        await svc.update_status(product_id, body.status)
    except ValueError as e:
        return JSONResponse(status_code=404, content={"code": -1, "msg": str(e)})
    except ModerationError as e:
        return JSONResponse(content={"code": -1, "msg": str(e)})
    except DataStoreError as e:
        logger.error("商品状态更新失败 (id=%s): %s", product_id, e)
        return JSONResponse(content={"code": -1, "msg": "商品状态更新失败"})

    products = await svc.list_products()
    return JSONResponse(content={
        "code": 1,
        "msg": "商品状态已更新",
        "products": products,
        "stats": svc.stats(products),
    })


@router.get("/products/{product_id}/files/{field}")
async def product_file(
    product_id: str,
    field: str,
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
):
    """获取商品文件的预览信息，私有存储文件返回 1 小时有效的签名地址。"""
    if field not in FILE_FIELDS:
        return JSONResponse(status_code=400, content={"code": -1, "msg": f"不支持的文件字段: {field}"})

    try:
        product = await ProductService(store).get_product(product_id)
    except DataStoreError as e:
        logger.error("商品查询失败 (id=%s): %s", product_id, e)
        return JSONResponse(status_code=502, content={"code": -1, "msg": f"文件访问失败: {e}"})
    if not product:
        return JSONResponse(status_code=404, content={"code": -1, "msg": "商品不存在"})
    if not product.get(field):
        return JSONResponse(status_code=404, content={"code": -1, "msg": "该商品没有可访问的文件"})

    try:
        result = await resolve_file(store, product[field])
    except FileAccessError as e:
        return JSONResponse(status_code=502, content={"code": -1, "msg": f"文件访问失败: {e}"})
    return JSONResponse(content={"code": 1, "file": result})


# ── 用户与创作者管理 ────────────────────────────────────────


@router.get("/users")
async def user_list(
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    search: str | None = Query(None),
    status: str | None = Query(None),
    user_type: str | None = Query(None),
):
    """用户列表（支持关键字、创作者状态、用户类型筛选）。"""
    svc = UserService(store)
    users = await svc.list_users()
    return JSONResponse(content={
        "code": 1,
        "users": filter_users(users, search, status, user_type),
        "stats": svc.stats(users),
    })


@router.put("/users/{user_id}/creator-status")
async def update_creator_status(
    user_id: str,
    body: StatusRequest,
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """审核创作者申请，成功后重新查询用户列表返回。"""
    svc = UserService(store, notifier)
    try:
        await svc.update_creator_status(user_id, body.status)
    except ValueError as e:
        return JSONResponse(status_code=404, content={"code": -1, "msg": str(e)})
    except ModerationError as e:
        return JSONResponse(content={"code": -1, "msg": str(e)})
    except DataStoreError as e:
        logger.error("创作者状态更新失败 (user_id=%s): %s", user_id, e)
        return JSONResponse(content={"code": -1, "msg": "创作者状态更新失败"})

    users = await svc.list_users()
    return JSONResponse(content={
        "code": 1,
        "msg": "创作者状态已更新",
        "users": users,
        "stats": svc.stats(users),
    })


# ── 提现处理 ────────────────────────────────────────────────


@router.get("/withdrawals")
async def withdrawal_list(
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    search: str | None = Query(None),
    status: str | None = Query(None),
):
    """提现列表（支持创作者姓名搜索和状态筛选）。"""
    svc = WithdrawalService(store)
    withdrawals = await svc.list_withdrawals()
    return JSONResponse(content={
        "code": 1,
        "withdrawals": filter_withdrawals(withdrawals, search, status),
        "stats": svc.stats(withdrawals),
    })


@router.post("/withdrawals/{withdrawal_id}/mark-paid")
async def mark_withdrawal_paid(
    withdrawal_id: str,
    admin: dict = Depends(get_current_admin),
    store: DataStoreClient = Depends(get_store),
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """将待处理提现标记为已打款（仅 pending 状态可操作），成功后重新查询列表返回。"""
    svc = WithdrawalService(store, notifier)
    try:
        await svc.mark_paid(withdrawal_id)
    except ValueError as e:
        return JSONResponse(status_code=404, content={"code": -1, "msg": str(e)})
    except ModerationError as e:
        return JSONResponse(content={"code": -1, "msg": str(e)})
    except DataStoreError as e:
        logger.error("提现状态更新失败 (id=%s): %s", withdrawal_id, e)
        return JSONResponse(content={"code": -1, "msg": "提现状态更新失败"})

    withdrawals = await svc.list_withdrawals()
    return JSONResponse(content={
        "code": 1,
        "msg": "提现已标记为已打款",
        "withdrawals": withdrawals,
        "stats": svc.stats(withdrawals),
    })


# ── 数据变更通知 ────────────────────────────────────────────


@router.post("/hooks/changes")
async def receive_change(
    request: Request,
    notifier: ChangeNotifier = Depends(get_notifier),
):
    """
    数据库 Webhook 接收端：{type, table, schema, record}。

    通过 X-Webhook-Secret 请求头校验，未配置 WEBHOOK_SECRET 时拒绝所有请求。
    """
    expected = os.getenv("WEBHOOK_SECRET", "")
    provided = request.headers.get("X-Webhook-Secret", "")
    if not expected or not secrets.compare_digest(provided, expected):
        return JSONResponse(status_code=403, content={"code": -1, "msg": "Webhook 校验失败"})

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"code": -1, "msg": "请求体不是有效的 JSON"})

    table = payload.get("table") if isinstance(payload, dict) else None
    if table not in WATCHED_TABLES:
        return JSONResponse(content={"code": -1, "msg": f"未订阅的数据表: {table}"})

    delivered = notifier.publish(table, str(payload.get("type") or "*").upper())
    return JSONResponse(content={"code": 1, "delivered": delivered})
