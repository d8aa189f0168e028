"""仪表盘聚合服务和 SSE 事件流测试。"""

import asyncio
import json
from datetime import date, datetime, timezone

from app.services.change_notifier import ChangeNotifier
from app.services.dashboard_service import (
    DASHBOARD_TABLES,
    DashboardService,
    format_sse,
    stream_dashboard,
)
from conftest import FakeStore, sample_tables

TODAY = date(2026, 10, 19)
NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def _load(store) -> dict:
    return asyncio.run(DashboardService(store).load(today=TODAY, now=NOW))


class TestDashboardLoad:
    """DashboardService.load 测试。"""

    def test_stats(self):
        stats = _load(FakeStore(sample_tables()))["stats"]
        assert stats == {
            "total_revenue": 19.0,
            "creator_earnings": 35.0,
            "total_withdrawn": 19.0,
            "company_balance": 16.0,
            "pending_withdrawals": 16.0,
            "products_sold": 2,
            "total_users": 3,
            "active_products": 1,
        }

    def test_chart(self):
        chart = _load(FakeStore(sample_tables()))["chart"]
        assert len(chart) == 7
        by_date = {p["date"]: p["revenue"] for p in chart}
        assert by_date["2026-10-19"] == 25.0
        assert by_date["2026-10-15"] == 10.0
        assert by_date["2026-10-13"] == 0.0

    def test_recent_activity(self):
        activity = _load(FakeStore(sample_tables()))["recent_activity"]
        assert len(activity) == 8
        first = activity[0]
        assert first["type"] == "purchase"
        assert first["user"] == "Ben Tan"
        assert first["action"] == "Purchased Watercolour Brushes"
        assert first["amount"] == "RM 25.00"
        assert first["time"] == "3 hours ago"

    def test_activity_with_relation_fallback(self):
        data = _load(FakeStore(sample_tables(), embed_supported=False))
        purchase = next(a for a in data["recent_activity"] if a["type"] == "purchase")
        assert purchase["user"] == "Ben Tan"
        product = next(a for a in data["recent_activity"] if a["type"] == "product_created")
        assert product["user"] in ("aina", "chong")

    def test_failed_query_degrades_only_its_stat(self):
        store = FakeStore(sample_tables())
        store.fail_tables.add("withdrawals")
        stats = _load(store)["stats"]
        assert stats["total_revenue"] == 0.0
        assert stats["company_balance"] == 35.0
        assert stats["products_sold"] == 2
        assert stats["total_users"] == 3

    def test_all_queries_failing(self):
        store = FakeStore(sample_tables())
        store.fail_tables.update(DASHBOARD_TABLES)
        data = _load(store)
        assert data["stats"]["creator_earnings"] == 0.0
        assert data["stats"]["total_users"] == 0
        assert len(data["chart"]) == 7
        assert data["recent_activity"] == []

    def test_empty_store(self):
        data = _load(FakeStore({}))
        assert data["stats"]["products_sold"] == 0
        assert data["recent_activity"] == []


class TestStream:
    """仪表盘 SSE 事件流测试。"""

    def test_format_sse(self):
        chunk = format_sse({"a": "收入"})
        assert chunk.startswith("event: dashboard\n")
        assert chunk.endswith("\n\n")
        assert json.loads(chunk.split("data: ", 1)[1]) == {"a": "收入"}

    def test_initial_push_then_refresh_and_keepalive(self):
        async def run():
            notifier = ChangeNotifier()
            sub = notifier.subscribe(DASHBOARD_TABLES)
            notifier.publish("purchases", "INSERT")

            states = iter([False, False, True])

            async def is_disconnected():
                return next(states)

            service = DashboardService(FakeStore(sample_tables()))
            return [chunk async for chunk in stream_dashboard(service, sub, is_disconnected, keepalive=0.01)]

        chunks = asyncio.run(run())
        assert len(chunks) == 3
        assert chunks[0].startswith("event: dashboard")
        assert chunks[1].startswith("event: dashboard")
        assert chunks[2] == ": keep-alive\n\n"

    def test_event_burst_triggers_single_refresh(self):
        """积压的多个变更事件合并为一次重新计算。"""
        loads = []

        class _CountingService(DashboardService):
            async def load(self, today=None, now=None):
                loads.append(1)
                return await super().load(today=today, now=now)

        async def run():
            notifier = ChangeNotifier()
            sub = notifier.subscribe(DASHBOARD_TABLES)
            for _ in range(50):
                notifier.publish("purchases", "INSERT")
            notifier.publish("withdrawals", "UPDATE")

            states = iter([False, True])

            async def is_disconnected():
                return next(states)

            service = _CountingService(FakeStore(sample_tables()))
            chunks = [chunk async for chunk in stream_dashboard(service, sub, is_disconnected, keepalive=0.01)]
            return chunks, sub.queue.qsize()

        chunks, backlog = asyncio.run(run())
        assert len(loads) == 2
        assert len(chunks) == 2
        assert backlog == 0

    def test_stops_when_disconnected(self):
        async def run():
            sub = ChangeNotifier().subscribe(DASHBOARD_TABLES)

            async def is_disconnected():
                return True

            service = DashboardService(FakeStore(sample_tables()))
            return [chunk async for chunk in stream_dashboard(service, sub, is_disconnected)]

        chunks = asyncio.run(run())
        assert len(chunks) == 1
        payload = json.loads(chunks[0].split("data: ", 1)[1])
        assert set(payload) == {"stats", "chart", "recent_activity"}
