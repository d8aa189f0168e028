"""
关联查询：优先使用嵌入关联一次查出，后端不支持该关联时回退为分开查询并按外键手动合并。
"""

import logging
from dataclasses import dataclass

from app.services.datastore_client import DataStoreClient, DataStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relation:
    """一条外键关联，关联行挂在结果行的 alias 键下。"""

    alias: str
    table: str
    local_key: str
    remote_key: str
    columns: str = "*"
    hint: str | None = None

    def embed_clause(self) -> str:
        target = f"{self.table}!{self.hint}" if self.hint else self.table
        return f"{self.alias}:{target}({self.columns})"


PRODUCT_OWNER = Relation("owner", "users", "owner_id", "id", "id, username", "products_owner_fk")
USER_CREATOR = Relation(
    "creator", "creators", "id", "user_id",
    "user_id, ic_number, full_name, recipient_name, bank_account, bank_name, status, created_at",
    "creators_user_id_fkey",
)
WITHDRAWAL_CREATOR = Relation(
    "creator", "creators", "creator_id", "user_id",
    "user_id, full_name, recipient_name, bank_account, bank_name",
    "withdrawals_creator_fk",
)
PURCHASE_USER = Relation("user", "users", "user_id", "id", "id, name, username")
PURCHASE_PRODUCT = Relation("product", "products", "product_id", "id", "id, title, owner_id")


def _single(value):
    """一对一嵌入关联可能以列表返回，统一成单行或 None。"""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def manual_join(
    rows: list[dict],
    related_rows: list[dict],
    local_key: str,
    remote_key: str,
    alias: str,
) -> list[dict]:
    """
    按外键映射把关联行合并到每一行的 alias 键下，找不到时为 None。

    外键值可能一边是数字一边是字符串，统一按字符串比较。
    """
    related_map = {}
    for related in related_rows:
        key = related.get(remote_key)
        if key is not None:
            related_map.setdefault(str(key), related)

    joined = []
    for row in rows:
        key = row.get(local_key)
        joined.append({**row, alias: related_map.get(str(key)) if key is not None else None})
    return joined


async def _attach(store: DataStoreClient, rows: list[dict], relation: Relation) -> list[dict]:
    keys = sorted({str(r[relation.local_key]) for r in rows if r.get(relation.local_key) is not None})
    if not keys:
        return [{**row, relation.alias: None} for row in rows]

    columns = relation.columns
    if columns != "*" and relation.remote_key not in [c.strip() for c in columns.split(",")]:
        columns = f"{relation.remote_key}, {columns}"
    try:
        related = await store.select(
            relation.table, columns, in_filters={relation.remote_key: keys}, order=None,
        )
    except DataStoreError as e:
        logger.error("关联表查询失败 (%s.%s): %s", relation.table, relation.remote_key, e)
        return [{**row, relation.alias: None} for row in rows]

    return manual_join(rows, related, relation.local_key, relation.remote_key, relation.alias)


async def fetch_with_relations(
    store: DataStoreClient,
    table: str,
    relations: list[Relation],
    *,
    columns: str = "*",
    filters: dict | None = None,
    order: str | None = "created_at",
    desc: bool = True,
    limit: int | None = None,
) -> list[dict]:
    """
    查询行集合并带出关联行。

    先尝试嵌入关联查询；后端拒绝时回退为基础查询 + 每个关联一次 IN 查询，
    通过 manual_join 合并。只有基础查询失败才抛出异常。

    Raises:
        DataStoreError: 基础查询失败。
    """
    embedded = ", ".join([columns] + [r.embed_clause() for r in relations])
    try:
        rows = await store.select(
            table, embedded, filters=filters, order=order, desc=desc, limit=limit,
        )
        return [
            {**row, **{r.alias: _single(row.get(r.alias)) for r in relations}}
            for row in rows
        ]
    except DataStoreError as e:
        logger.warning("嵌入关联查询失败，回退为手动合并 (table=%s): %s", table, e)

    rows = await store.select(
        table, columns, filters=filters, order=order, desc=desc, limit=limit,
    )
    for relation in relations:
        rows = await _attach(store, rows, relation)
    return rows
