"""Integration tests for the dashboard routes."""

import asyncio
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from taskmon import dashboard
from taskmon.dashboard import Monitor, create_app


@pytest.fixture
def monitor(api):
    return Monitor(api, interval_ms=1000, followup_ms=20)


@pytest.fixture
async def client(monitor):
    app = create_app(monitor)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await monitor.poller.shutdown()


class TestPage:
    @pytest.mark.asyncio
    async def test_index(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert "Task Monitor" in response.text

    @pytest.mark.asyncio
    async def test_health_before_first_poll(self, client):
        data = (await client.get("/health")).json()
        assert data["backend"] == "ok"
        assert data["visible"] is False
        assert data["armed"] is False
        assert data["last_success"] is None

    def test_import_builds_no_app(self):
        assert not hasattr(dashboard, "app")

    @pytest.mark.asyncio
    async def test_factory_uses_module_config(self):
        monitor = create_app().state.monitor
        assert monitor.client.base_url == dashboard.BACKEND_URL.rstrip("/")
        assert monitor.poller.interval == dashboard.REFRESH_MS / 1000
        await monitor.close()


class TestControls:
    @pytest.mark.asyncio
    async def test_refresh_runs_a_cycle(self, client, monitor, backend):
        response = await client.post("/api/refresh")
        assert response.json() == {"ok": True}
        await asyncio.sleep(0.1)
        assert backend.hits["/api/tasks"] == 1
        assert monitor.sink.latest["tasks"]["data"]["total"] == 2

    @pytest.mark.asyncio
    async def test_auto_refresh_toggle(self, client, monitor):
        data = (await client.post("/api/auto_refresh", json={"enabled": False})).json()
        assert data == {"auto_refresh": False, "armed": False}
        # Still hidden: turning it back on does not arm the timer
        data = (await client.post("/api/auto_refresh", json={"enabled": True})).json()
        assert data == {"auto_refresh": True, "armed": False}

    @pytest.mark.asyncio
    async def test_filters_rerender_without_fetching(self, client, monitor, backend):
        await monitor.poller.run_cycle()
        response = await client.post("/api/filters", json={"status": "running", "priority": "all"})
        assert response.status_code == 200
        assert [row["task"]["id"] for row in response.json()["rows"]] == [2]
        assert backend.hits["/api/tasks"] == 1

    @pytest.mark.asyncio
    async def test_unknown_filter_rejected(self, client):
        response = await client.post("/api/filters", json={"status": "SLEEPING"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_task_detail(self, client, monitor, backend):
        backend.tasks[0].update(start_time="2024-05-01 12:00:02", end_time="2024-05-01 12:00:07")
        await monitor.poller.run_cycle()
        data = (await client.get("/api/tasks/1")).json()
        assert data["display"] == {"wait": "2.0s", "exec": "5.0s", "turnaround": "7.0s"}

    @pytest.mark.asyncio
    async def test_task_detail_not_found(self, client):
        assert (await client.get("/api/tasks/99")).status_code == 404


class TestActions:
    @pytest.mark.asyncio
    async def test_add_task(self, client, backend):
        response = await client.post("/api/tasks", json={"name": "build", "priority": "high", "duration": 500})
        assert response.json()["success"] is True
        assert response.json()["task_id"] == 3
        await asyncio.sleep(0.1)
        assert backend.hits["/api/status"] == 1

    @pytest.mark.asyncio
    async def test_add_task_bad_priority(self, client, backend):
        response = await client.post("/api/tasks", json={"name": "build", "priority": "urgent"})
        assert response.status_code == 400
        assert backend.received == []

    @pytest.mark.asyncio
    async def test_cancel_failure_is_inline(self, client, backend):
        backend.responses["/api/cancel_task"] = {"success": False, "error": "Task not pending"}
        response = await client.post("/api/tasks/1/cancel")
        assert response.status_code == 200
        assert response.json()["error"] == "Task not pending"

    @pytest.mark.asyncio
    async def test_simulate(self, client):
        data = (await client.post("/api/simulate", json={"scenario": "burst", "count": 5, "interval": 10})).json()
        assert data["success"] is True
        assert data["total"] == 12

    @pytest.mark.asyncio
    async def test_export_download(self, client):
        response = await client.get("/api/export/csv")
        assert response.status_code == 200
        assert response.text == "id,name\n1,task-1\n"
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].startswith("attachment; filename=\"task_snapshot_")

    @pytest.mark.asyncio
    async def test_export_unknown_format(self, client):
        assert (await client.get("/api/export/xml")).status_code == 400

    @pytest.mark.asyncio
    async def test_close_cancels_followup(self, client, monitor, backend):
        monitor.gateway.followup_delay = 1
        await client.post("/api/tasks/2/cancel")
        await monitor.close()
        assert monitor.gateway._followups == set()
        assert "/api/status" not in backend.hits


class TestVisibility:
    @pytest.mark.asyncio
    async def test_any_visible_browser_keeps_polling(self, monitor):
        a, b = MagicMock(), MagicMock()
        monitor.set_visibility(a, True)
        assert monitor.poller.armed
        monitor.set_visibility(b, False)
        assert monitor.poller.armed
        monitor.set_visibility(a, False)
        assert not monitor.poller.armed
        monitor.set_visibility(b, True)
        assert monitor.poller.armed
        monitor.set_visibility(b, None)
        assert not monitor.poller.armed
        await monitor.poller.shutdown()
