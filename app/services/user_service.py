"""用户与创作者申请管理服务模块。"""

import logging

from app.models.schemas import CREATOR_STATUSES
from app.services.change_notifier import ChangeNotifier
from app.services.datastore_client import DataStoreClient, DataStoreError
from app.services.moderation import validate_status
from app.services.relations import USER_CREATOR, fetch_with_relations

logger = logging.getLogger(__name__)


class UserService:
    """用户管理服务：列表查询（含创作者资料）、创作者申请审核、统计。"""

    def __init__(self, store: DataStoreClient, notifier: ChangeNotifier | None = None):
        self.store = store
        self.notifier = notifier

    async def list_users(self) -> list[dict]:
        """查询全部用户（按注册时间倒序），每行带 creator（无资料为 None）。"""
        try:
            return await fetch_with_relations(self.store, "users", [USER_CREATOR])
        except DataStoreError as e:
            logger.error("用户列表查询失败: %s", e)
            return []

    async def update_creator_status(self, user_id, status: str) -> None:
        """
        修改创作者申请状态，按 creators.user_id 定位。

        创作者状态只决定是否可提现，不影响用户本身的访问。

        Raises:
            ModerationError: 状态值不合法。
            ValueError: 该用户没有创作者资料。
            DataStoreError: 更新失败。
        """
        new_status = validate_status(status, CREATOR_STATUSES)
        updated = await self.store.update(
            "creators", {"status": new_status}, match={"user_id": user_id},
        )
        if not updated:
            raise ValueError(f"用户 user_id={user_id} 没有创作者资料")
        logger.info("创作者状态已更新: user_id=%s, status=%s", user_id, new_status)
        if self.notifier:
            self.notifier.publish("creators", "UPDATE")

    @staticmethod
    def stats(users: list[dict]) -> dict:
        creators = [u["creator"] for u in users if u.get("creator") is not None]
        return {
            "total": len(users),
            "creators": len(creators),
            "regular": len(users) - len(creators),
            "approved": sum(1 for c in creators if c.get("status") == "approved"),
            "pending": sum(1 for c in creators if c.get("status") == "pending"),
            "rejected": sum(1 for c in creators if c.get("status") == "rejected"),
        }
