"""
数据模型 / 类型定义，供各模块引用。
使用 dataclass 保持轻量，不引入 ORM；实体行保持为后端返回的 dict。
"""

from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP

Q = Decimal("0.01")

PRODUCT_STATUSES = ("review", "approved", "rejected")
CREATOR_STATUSES = ("pending", "approved", "rejected")
WITHDRAWAL_STATUSES = ("pending", "paid")


def to_money(value) -> float:
    """Decimal 金额转为保留两位小数的 float，用于 JSON 输出。"""
    return float(Decimal(value).quantize(Q, rounding=ROUND_HALF_UP))


@dataclass
class DashboardStats:
    total_revenue: Decimal = Decimal("0")
    creator_earnings: Decimal = Decimal("0")
    total_withdrawn: Decimal = Decimal("0")
    company_balance: Decimal = Decimal("0")
    pending_withdrawals: Decimal = Decimal("0")
    products_sold: int = 0
    total_users: int = 0
    active_products: int = 0

    def to_dict(self) -> dict:
        return {
            "total_revenue": to_money(self.total_revenue),
            "creator_earnings": to_money(self.creator_earnings),
            "total_withdrawn": to_money(self.total_withdrawn),
            "company_balance": to_money(self.company_balance),
            "pending_withdrawals": to_money(self.pending_withdrawals),
            "products_sold": self.products_sold,
            "total_users": self.total_users,
            "active_products": self.active_products,
        }


@dataclass
class ChartPoint:
    date: str  # ISO 日期
    label: str
    revenue: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {"date": self.date, "label": self.label, "revenue": to_money(self.revenue)}


@dataclass
class ActivityItem:
    id: str
    type: str  # purchase / user_joined / product_created
    user: str
    action: str
    time: str
    timestamp: str
    username: str | None = None
    amount: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)
