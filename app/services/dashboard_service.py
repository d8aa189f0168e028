"""
仪表盘聚合服务：并发执行各项查询，再交给对账模型计算统计、趋势和最近动态。

每项查询独立降级：失败时记录日志并按空列表 / 0 处理，不影响其他统计。
每次调用都从原始数据重新计算，不缓存。
"""

import asyncio
import json
import logging
from datetime import date, datetime

from app.services.change_notifier import Subscription
from app.services.datastore_client import DataStoreClient, DataStoreError
from app.services.reconciliation import build_activity_feed, reconcile, revenue_series
from app.services.relations import (
    PRODUCT_OWNER,
    PURCHASE_PRODUCT,
    PURCHASE_USER,
    fetch_with_relations,
)

logger = logging.getLogger(__name__)

RECENT_PURCHASES = 5
RECENT_USERS = 3
RECENT_PRODUCTS = 3

DASHBOARD_TABLES = ("purchases", "users", "products", "withdrawals")
STREAM_KEEPALIVE = 15.0


async def _safe(label: str, coro, default):
    try:
        return await coro
    except DataStoreError as e:
        logger.error("仪表盘查询失败 (%s): %s", label, e)
        return default


class DashboardService:
    """仪表盘服务：统计卡片、近 7 天收入趋势、最近动态。"""

    def __init__(self, store: DataStoreClient):
        self.store = store

    async def load(self, today: date | None = None, now: datetime | None = None) -> dict:
        store = self.store
        (
            purchases,
            products,
            withdrawals,
            recent_purchases,
            recent_users,
            recent_products,
            total_users,
        ) = await asyncio.gather(
            _safe("purchases", store.select(
                "purchases", "id, amount, status, created_at", filters={"status": "paid"},
            ), []),
            _safe("products", store.select(
                "products", "id, status, is_active", filters={"is_active": True},
            ), []),
            _safe("withdrawals", store.select(
                "withdrawals", "id, amount, fee, net_amount, status", filters={"status": "paid"},
            ), []),
            _safe("recent_purchases", fetch_with_relations(
                store, "purchases", [PURCHASE_USER, PURCHASE_PRODUCT],
                columns="id, amount, status, created_at, user_id, product_id",
                filters={"status": "paid"}, limit=RECENT_PURCHASES,
            ), []),
            _safe("recent_users", store.select(
                "users", "id, name, username, created_at", order="created_at", limit=RECENT_USERS,
            ), []),
            _safe("recent_products", fetch_with_relations(
                store, "products", [PRODUCT_OWNER],
                columns="id, title, owner_id, created_at", limit=RECENT_PRODUCTS,
            ), []),
            _safe("total_users", store.count("users"), 0),
        )

        stats = reconcile(purchases, withdrawals, products, total_users=total_users)
        chart = revenue_series(purchases, today=today)
        activity = build_activity_feed(recent_purchases, recent_users, recent_products, now=now)

        return {
            "stats": stats.to_dict(),
            "chart": [p.to_dict() for p in chart],
            "recent_activity": [a.to_dict() for a in activity],
        }


def format_sse(data: dict, event: str = "dashboard") -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def stream_dashboard(
    service: DashboardService,
    subscription: Subscription,
    is_disconnected,
    keepalive: float = STREAM_KEEPALIVE,
):
    """
    SSE 事件流：连接后先推送一次完整仪表盘，之后每收到一个变更事件重新计算并推送。

    同一订阅内事件按顺序处理，已积压的事件合并为一次刷新；空闲时发送注释行保持连接。
    """
    yield format_sse(await service.load())
    while not await is_disconnected():
        try:
            event = await asyncio.wait_for(subscription.next_event(), timeout=keepalive)
        except asyncio.TimeoutError:
            yield ": keep-alive\n\n"
            continue
        merged = 1 + subscription.drain()
        logger.debug("仪表盘刷新: table=%s, type=%s, 合并事件=%d", event.table, event.type, merged)
        yield format_sse(await service.load())
