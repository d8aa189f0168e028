"""创作者提现处理服务模块。"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from app.models.schemas import WITHDRAWAL_STATUSES, to_money
from app.services.change_notifier import ChangeNotifier
from app.services.datastore_client import DataStoreClient, DataStoreError
from app.services.moderation import ModerationError
from app.services.reconciliation import check_net_amount, to_decimal
from app.services.relations import WITHDRAWAL_CREATOR, fetch_with_relations

logger = logging.getLogger(__name__)


class WithdrawalService:
    """提现服务：列表查询（含收款资料）、标记已打款、统计。"""

    def __init__(self, store: DataStoreClient, notifier: ChangeNotifier | None = None):
        self.store = store
        self.notifier = notifier

    async def list_withdrawals(self) -> list[dict]:
        """
        查询全部提现申请（按申请时间倒序），每行带 creator 收款资料，并附加：
        - can_mark_paid: 仅待处理状态可标记为已打款
        - net_amount_valid: net_amount 是否等于 amount - fee
        """
        try:
            rows = await fetch_with_relations(
                self.store, "withdrawals", [WITHDRAWAL_CREATOR], order="requested_at",
            )
        except DataStoreError as e:
            logger.error("提现列表查询失败: %s", e)
            return []
        return [
            {
                **w,
                "can_mark_paid": w.get("status") == "pending",
                "net_amount_valid": check_net_amount(w),
            }
            for w in rows
        ]

    async def mark_paid(self, withdrawal_id, now: datetime | None = None) -> None:
        """
        将待处理的提现标记为已打款，并在同一次更新中写入 processed_at。

        Raises:
            ValueError: 提现记录不存在。
            ModerationError: 提现不是待处理状态。
            DataStoreError: 查询或更新失败。
        """
        rows = await self.store.select(
            "withdrawals", "id, status", filters={"id": withdrawal_id}, limit=1,
        )
        pending, paid = WITHDRAWAL_STATUSES
        if not rows:
            raise ValueError(f"提现记录 id={withdrawal_id} 不存在")
        if rows[0].get("status") != pending:
            raise ModerationError("仅待处理的提现可标记为已打款")

        processed_at = (now or datetime.now(timezone.utc)).isoformat()
        # 匹配条件带上 pending，并发请求中只有一个能更新成功
        updated = await self.store.update(
            "withdrawals",
            {"status": paid, "processed_at": processed_at},
            match={"id": withdrawal_id, "status": pending},
        )
        if not updated:
            raise ModerationError("仅待处理的提现可标记为已打款")
        logger.info("提现已标记为已打款: id=%s, processed_at=%s", withdrawal_id, processed_at)
        if self.notifier:
            self.notifier.publish("withdrawals", "UPDATE")

    @staticmethod
    def stats(withdrawals: list[dict]) -> dict:
        paid = [w for w in withdrawals if w.get("status") == "paid"]
        total_amount = sum((to_decimal(w.get("net_amount")) for w in paid), Decimal("0"))
        return {
            "total": len(withdrawals),
            "pending": sum(1 for w in withdrawals if w.get("status") == "pending"),
            "paid": len(paid),
            "total_amount": to_money(total_amount),
        }
