"""
变更通知中心：按表发布/订阅"数据已变化"事件。

事件来源：
- 数据库 Webhook 推送（/v1/admin/hooks/changes）
- 后台轮询任务检测到表指纹变化
- 本服务自身的写操作

订阅方收到事件后重新执行完整查询，不做增量更新。
"""

import asyncio
import logging
from dataclasses import dataclass, field

from app.services.datastore_client import DataStoreClient, DataStoreError

logger = logging.getLogger(__name__)

WATCHED_TABLES = ("purchases", "users", "products", "withdrawals", "creators")

# 各表用于排序的时间列
TIMESTAMP_COLUMNS = {"withdrawals": "requested_at"}


@dataclass
class ChangeEvent:
    table: str
    type: str = "*"  # INSERT / UPDATE / DELETE / *


@dataclass(eq=False)
class Subscription:
    tables: frozenset
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    async def next_event(self) -> ChangeEvent:
        return await self.queue.get()

    def drain(self) -> int:
        """丢弃已积压的事件，返回丢弃数量。"""
        dropped = 0
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            dropped += 1


class ChangeNotifier:
    """进程内的按表发布/订阅中心。"""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def subscribe(self, tables) -> Subscription:
        sub = Subscription(tables=frozenset(tables))
        self._subscriptions.append(sub)
        logger.debug("新增订阅: tables=%s, 当前订阅数=%d", sorted(sub.tables), len(self._subscriptions))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
            logger.debug("取消订阅: 当前订阅数=%d", len(self._subscriptions))

    def publish(self, table: str, event_type: str = "*") -> int:
        """
        向关注该表的订阅方投递事件。

        Returns:
            收到事件的订阅数量。
        """
        event = ChangeEvent(table=table, type=event_type)
        delivered = 0
        for sub in list(self._subscriptions):
            if table in sub.tables:
                sub.queue.put_nowait(event)
                delivered += 1
        logger.info("数据变更事件: table=%s, type=%s, 投递=%d", table, event_type, delivered)
        return delivered

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


async def table_fingerprint(store: DataStoreClient, table: str) -> tuple:
    """表指纹：行数 + 最新时间戳，用于轮询检测插入和删除。"""
    column = TIMESTAMP_COLUMNS.get(table, "created_at")
    total = await store.count(table)
    rows = await store.select(table, column, order=column, limit=1)
    latest = rows[0].get(column) if rows else None
    return total, latest


async def watch_changes(
    store: DataStoreClient,
    notifier: ChangeNotifier,
    interval: float = 15.0,
    tables=WATCHED_TABLES,
) -> None:
    """
    后台任务：定期比较各表指纹，发生变化时发布事件。

    首轮只记录基准指纹；查询失败时保留上一轮指纹，下一轮再试。
    """
    fingerprints: dict[str, tuple] = {}
    while True:
        for table in tables:
            try:
                current = await table_fingerprint(store, table)
            except DataStoreError as e:
                logger.error("表指纹查询失败 (table=%s): %s", table, e)
                continue
            previous = fingerprints.get(table)
            fingerprints[table] = current
            if previous is not None and previous != current:
                notifier.publish(table)
        await asyncio.sleep(interval)
