"""商品审核服务模块。"""

import logging

from app.models.schemas import PRODUCT_STATUSES
from app.services.change_notifier import ChangeNotifier
from app.services.datastore_client import DataStoreClient, DataStoreError
from app.services.moderation import validate_status
from app.services.relations import PRODUCT_OWNER, fetch_with_relations

logger = logging.getLogger(__name__)


class ProductService:
    """商品审核服务：列表查询（含创建者）、状态变更、状态统计。"""

    def __init__(self, store: DataStoreClient, notifier: ChangeNotifier | None = None):
        self.store = store
        self.notifier = notifier

    async def list_products(self) -> list[dict]:
        """
        查询全部商品（按创建时间倒序），每行带 owner（创建者，可能为 None）。

        查询失败时记录日志并返回空列表。
        """
        try:
            return await fetch_with_relations(self.store, "products", [PRODUCT_OWNER])
        except DataStoreError as e:
            logger.error("商品列表查询失败: %s", e)
            return []

    async def update_status(self, product_id, status: str) -> None:
        """
        修改商品审核状态（review / approved / rejected，可任意往返）。

        Raises:
            ModerationError: 状态值不合法。
            ValueError: 商品不存在。
            DataStoreError: 更新失败。
        """
        new_status = validate_status(status, PRODUCT_STATUSES)
        updated = await self.store.update("products", {"status": new_status}, match={"id": product_id})
        if not updated:
            raise ValueError(f"商品 id={product_id} 不存在")
        logger.info("商品状态已更新: id=%s, status=%s", product_id, new_status)
        if self.notifier:
            self.notifier.publish("products", "UPDATE")

    async def get_product(self, product_id) -> dict | None:
        rows = await self.store.select("products", filters={"id": product_id}, limit=1)
        return rows[0] if rows else None

    @staticmethod
    def stats(products: list[dict]) -> dict:
        return {
            "total": len(products),
            "approved": sum(1 for p in products if p.get("status") == "approved"),
            "review": sum(1 for p in products if p.get("status") == "review"),
            "rejected": sum(1 for p in products if p.get("status") == "rejected"),
        }
