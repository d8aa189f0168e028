"""
财务对账模型：由已查询的行数据计算仪表盘统计，纯函数，不访问数据存储。

口径：
- creator_earnings = 已支付购买金额之和
- total_revenue = 已支付提现的 net_amount 之和（即平台实际打款额，沿用原有命名）
- company_balance = creator_earnings - total_revenue，可为负数，不做截断
- pending_withdrawals = creator_earnings - total_withdrawn
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from app.models.schemas import ActivityItem, ChartPoint, DashboardStats, Q

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 8


def to_decimal(value) -> Decimal:
    """把后端返回的金额（数字、字符串或 None）转为 Decimal，无法解析时按 0 处理。"""
    if value is None or value == "":
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning("无法解析金额: %r", value)
        return Decimal("0")
    # numeric 列可能存 NaN / Infinity
    if not amount.is_finite():
        logger.warning("金额不是有限数值: %r", value)
        return Decimal("0")
    return amount


def format_amount(value) -> str:
    return f"RM {to_decimal(value).quantize(Q)}"


def parse_timestamp(value: str) -> datetime:
    """
    解析 ISO 时间戳，无时区信息的按 UTC 处理。

    Raises:
        ValueError: 时间戳格式无效。
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"无效时间戳: {value!r}")
    text = value.strip().replace(" ", "T", 1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def time_ago(timestamp, now: datetime | None = None) -> str:
    """相对时间：<60 秒 "Just now"，之后按分钟 / 小时 / 天向下取整。"""
    when = timestamp if isinstance(timestamp, datetime) else parse_timestamp(timestamp)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = math.floor((now - when).total_seconds())

    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"


def _is_paid(row: dict) -> bool:
    return row.get("status") == "paid"


def check_net_amount(withdrawal: dict) -> bool:
    """校验 net_amount == amount - fee；不一致时记录告警，但不修正存储值。"""
    if withdrawal.get("amount") is None or withdrawal.get("net_amount") is None:
        return True
    expected = to_decimal(withdrawal["amount"]) - to_decimal(withdrawal.get("fee"))
    actual = to_decimal(withdrawal["net_amount"])
    if expected != actual:
        logger.warning(
            "提现金额不一致: id=%s, amount - fee = %s, net_amount = %s",
            withdrawal.get("id"), expected, actual,
        )
        return False
    return True


def reconcile(
    purchases: list[dict],
    withdrawals: list[dict],
    products: list[dict],
    total_users: int = 0,
) -> DashboardStats:
    """根据购买、提现、商品行计算仪表盘统计。"""
    paid_purchases = [p for p in purchases if _is_paid(p)]
    paid_withdrawals = [w for w in withdrawals if _is_paid(w)]
    for w in paid_withdrawals:
        check_net_amount(w)

    creator_earnings = sum((to_decimal(p.get("amount")) for p in paid_purchases), Decimal("0"))
    total_revenue = sum((to_decimal(w.get("net_amount")) for w in paid_withdrawals), Decimal("0"))

    # 查询层已按 is_active 过滤，这里再叠加 status = approved
    active_products = sum(
        1 for p in products
        if p.get("status") == "approved" and p.get("is_active", True)
    )

    return DashboardStats(
        total_revenue=total_revenue,
        creator_earnings=creator_earnings,
        total_withdrawn=total_revenue,
        company_balance=creator_earnings - total_revenue,
        pending_withdrawals=creator_earnings - total_revenue,
        products_sold=len(paid_purchases),
        total_users=total_users,
        active_products=active_products,
    )


def revenue_series(
    purchases: list[dict], today: date | None = None, days: int = 7
) -> list[ChartPoint]:
    """近 N 天（含今天）每日已支付购买金额，按日期从旧到新，固定返回 N 个点。"""
    today = today or date.today()
    paid = [p for p in purchases if _is_paid(p)]

    points = []
    for i in range(days - 1, -1, -1):
        d = today - timedelta(days=i)
        d_str = d.isoformat()
        revenue = sum(
            (to_decimal(p.get("amount")) for p in paid
             if str(p.get("created_at") or "").startswith(d_str)),
            Decimal("0"),
        )
        points.append(ChartPoint(date=d_str, label=f"{d.day} {d.strftime('%b')}", revenue=revenue))
    return points


def _event_time(row: dict) -> datetime | None:
    try:
        return parse_timestamp(row.get("created_at"))
    except ValueError:
        logger.warning("动态记录时间戳无效，已跳过: id=%s", row.get("id"))
        return None


def build_activity_feed(
    purchases: list[dict],
    users: list[dict],
    products: list[dict],
    now: datetime | None = None,
    limit: int = RECENT_ACTIVITY_LIMIT,
) -> list[ActivityItem]:
    """合并最近购买、注册、商品创建为一条按时间倒序的动态流，最多 limit 条。"""
    now = now or datetime.now(timezone.utc)
    entries: list[tuple[datetime, ActivityItem]] = []

    for purchase in purchases:
        when = _event_time(purchase)
        if when is None:
            continue
        buyer = purchase.get("user") or {}
        product = purchase.get("product") or {}
        entries.append((when, ActivityItem(
            id=str(purchase.get("id")),
            type="purchase",
            user=buyer.get("name") or "Unknown User",
            username=buyer.get("username"),
            action=f"Purchased {product.get('title') or 'a product'}",
            time=time_ago(when, now),
            amount=format_amount(purchase.get("amount")),
            timestamp=purchase["created_at"],
        )))

    for user in users:
        when = _event_time(user)
        if when is None:
            continue
        entries.append((when, ActivityItem(
            id=str(user.get("id")),
            type="user_joined",
            user=user.get("name") or "",
            username=user.get("username"),
            action="Joined the platform",
            time=time_ago(when, now),
            timestamp=user["created_at"],
        )))

    for product in products:
        when = _event_time(product)
        if when is None:
            continue
        owner = product.get("owner") or {}
        entries.append((when, ActivityItem(
            id=str(product.get("id")),
            type="product_created",
            user=owner.get("username") or "Unknown",
            action=f'Created product "{product.get("title")}"',
            time=time_ago(when, now),
            timestamp=product["created_at"],
        )))

    entries.sort(key=lambda e: e[0], reverse=True)
    return [item for _, item in entries[:limit]]
