"""全局测试配置：测试模式、环境变量、内存版数据存储。"""

import os
import re

# 在任何模块导入之前设置 TESTING 环境变量，
# 防止 app.main 启动事件创建后台任务。
os.environ["TESTING"] = "1"
os.environ["JWT_SECRET"] = "test-secret-key-for-admin"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin123"
os.environ["WEBHOOK_SECRET"] = "hook-secret"

import pytest
from fastapi.testclient import TestClient

from app.datastore import get_notifier, get_store
from app.main import app
from app.services.auth import reset_login_state
from app.services.change_notifier import ChangeNotifier
from app.services.datastore_client import DataStoreError
from app.services.relations import (
    PRODUCT_OWNER,
    PURCHASE_PRODUCT,
    PURCHASE_USER,
    USER_CREATOR,
    WITHDRAWAL_CREATOR,
)

_EMBED = re.compile(r"(\w+):(\w+)(?:!\w+)?\(")

_RELATIONS = {
    ("products", "owner"): PRODUCT_OWNER,
    ("users", "creator"): USER_CREATOR,
    ("withdrawals", "creator"): WITHDRAWAL_CREATOR,
    ("purchases", "user"): PURCHASE_USER,
    ("purchases", "product"): PURCHASE_PRODUCT,
}


def _same(row_value, value) -> bool:
    if isinstance(value, bool) or isinstance(row_value, bool):
        return row_value == value
    return str(row_value) == str(value)


class FakeStore:
    """
    内存版数据存储，接口与 DataStoreClient 一致。

    - embed_supported=False 时，带嵌入关联的查询抛出 DataStoreError（模拟关联未声明）
    - fail_tables 中的表查询失败
    - fail_updates=True 时所有更新失败
    """

    base_url = "https://fake.supabase.co"

    def __init__(self, tables: dict | None = None, embed_supported: bool = True):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.embed_supported = embed_supported
        self.fail_tables: set[str] = set()
        self.fail_updates = False
        self.sign_error: str | None = None
        self.selects: list[tuple[str, str]] = []
        self.updates: list[tuple[str, dict, dict]] = []
        self.signed: list[tuple[str, str, int]] = []

    def _rows(self, table: str, filters=None, in_filters=None) -> list[dict]:
        rows = self.tables.get(table, [])
        for column, value in (filters or {}).items():
            rows = [r for r in rows if _same(r.get(column), value)]
        for column, values in (in_filters or {}).items():
            wanted = {str(v) for v in values}
            rows = [r for r in rows if str(r.get(column)) in wanted]
        return rows

    async def select(self, table, columns="*", *, filters=None, in_filters=None,
                     order=None, desc=True, limit=None):
        self.selects.append((table, columns))
        if table in self.fail_tables:
            raise DataStoreError(f"relation \"{table}\" unavailable", status_code=500)
        embeds = _EMBED.findall(columns)
        if embeds and not self.embed_supported:
            raise DataStoreError(
                "Could not find a relationship in the schema cache",
                status_code=400, code="PGRST200",
            )

        rows = [dict(r) for r in self._rows(table, filters, in_filters)]
        if order:
            rows.sort(key=lambda r: str(r.get(order) or ""), reverse=desc)
        if limit is not None:
            rows = rows[:limit]

        for alias, _target in embeds:
            relation = _RELATIONS[(table, alias)]
            for row in rows:
                matches = self._rows(relation.table, {relation.remote_key: row.get(relation.local_key)})
                row[alias] = dict(matches[0]) if matches and row.get(relation.local_key) is not None else None
        return rows

    async def count(self, table, *, filters=None):
        if table in self.fail_tables:
            raise DataStoreError(f"relation \"{table}\" unavailable", status_code=500)
        return len(self._rows(table, filters))

    async def update(self, table, values, *, match):
        if self.fail_updates:
            raise DataStoreError("update rejected", status_code=500)
        self.updates.append((table, dict(values), dict(match)))
        rows = self._rows(table, match)
        for row in rows:
            row.update(values)
        return [dict(r) for r in rows]

    async def create_signed_url(self, bucket, path, expires_in=3600):
        if self.sign_error:
            raise DataStoreError(self.sign_error, status_code=400)
        self.signed.append((bucket, path, expires_in))
        return f"{self.base_url}/storage/v1/object/sign/{bucket}/{path}?token=signed"

    async def aclose(self):
        pass


def sample_tables() -> dict:
    """一组覆盖各种状态的示例数据。"""
    return {
        "users": [
            {"id": "u1", "name": "Aina Rahman", "username": "aina", "email": "aina@example.com",
             "phone_number": "0123456789", "bio": "", "created_at": "2026-10-18T09:00:00+00:00"},
            {"id": "u2", "name": "Ben Tan", "username": "bentan", "email": "ben@example.com",
             "phone_number": None, "bio": "", "created_at": "2026-10-17T09:00:00+00:00"},
            {"id": "u3", "name": "Chong Wei", "username": "chong", "email": "chong@example.com",
             "phone_number": "0198765432", "bio": "", "created_at": "2026-10-10T09:00:00+00:00"},
        ],
        "creators": [
            {"user_id": "u1", "full_name": "Aina binti Rahman", "ic_number": "900101-14-5678",
             "recipient_name": "Aina Rahman", "bank_name": "Maybank", "bank_account": "1122334455",
             "status": "approved", "created_at": "2026-10-18T10:00:00+00:00"},
            {"user_id": "u3", "full_name": "Chong Wei Ming", "ic_number": "880505-10-1234",
             "recipient_name": "Chong W M", "bank_name": "CIMB", "bank_account": "99887766",
             "status": "pending", "created_at": "2026-10-11T10:00:00+00:00"},
        ],
        "products": [
            {"id": "p1", "owner_id": "u1", "title": "Watercolour Brushes", "category": "Design",
             "price": 25, "status": "approved", "is_active": True, "is_deleted": False,
             "file_url": "https://fake.supabase.co/storage/v1/object/product-files/u1/brushes.zip",
             "thumbnail_url": "https://cdn.example.com/thumbs/brushes.png", "video_url": None,
             "created_at": "2026-10-18T11:00:00+00:00"},
            {"id": "p2", "owner_id": "u3", "title": "Exam Notes", "category": "Education",
             "price": 10, "status": "review", "is_active": True, "is_deleted": False,
             "file_url": "u3/notes.pdf", "thumbnail_url": None, "video_url": None,
             "created_at": "2026-10-12T11:00:00+00:00"},
            {"id": "p3", "owner_id": "u1", "title": "Old Template", "category": "Design",
             "price": 5, "status": "rejected", "is_active": False, "is_deleted": False,
             "file_url": None, "thumbnail_url": None, "video_url": None,
             "created_at": "2026-10-05T11:00:00+00:00"},
        ],
        "purchases": [
            {"id": "c1", "product_id": "p1", "user_id": "u2", "amount": "25.00", "status": "paid",
             "created_at": "2026-10-19T08:30:00+00:00"},
            {"id": "c2", "product_id": "p2", "user_id": "u2", "amount": "10.00", "status": "paid",
             "created_at": "2026-10-15T08:30:00+00:00"},
            {"id": "c3", "product_id": "p1", "user_id": "u3", "amount": "25.00", "status": "pending",
             "created_at": "2026-10-19T07:00:00+00:00"},
        ],
        "withdrawals": [
            {"id": "w1", "creator_id": "u1", "amount": "20.00", "fee": "1.00", "net_amount": "19.00",
             "status": "paid", "requested_at": "2026-10-16T12:00:00+00:00",
             "processed_at": "2026-10-17T12:00:00+00:00"},
            {"id": "w2", "creator_id": "u1", "amount": "5.00", "fee": "0.50", "net_amount": "4.50",
             "status": "pending", "requested_at": "2026-10-18T12:00:00+00:00", "processed_at": None},
        ],
    }


@pytest.fixture(autouse=True)
def _reset_auth():
    reset_login_state()
    yield
    reset_login_state()


@pytest.fixture
def store():
    return FakeStore(sample_tables())


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def client(store, notifier):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    resp = client.post("/v1/admin/auth/login", json={"username": "admin", "password": "admin123"})
    return {"Authorization": f"Bearer {resp.json()['token']}"}
