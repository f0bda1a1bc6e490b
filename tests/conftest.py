"""
Pytest configuration and shared fixtures.
"""

import asyncio
from datetime import datetime
from typing import List

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from taskmon.client import SchedulerApiError, SchedulerClient
from taskmon.models import PollResult, StatusAggregate, Task, WorkerRoster, WorkerStat
from taskmon.sink import RenderSink

T0 = datetime(2024, 5, 1, 12, 0, 0)


def task_dict(task_id: int, **overrides) -> dict:
    """A task as the scheduler API serialises it."""
    data = {
        "id": task_id,
        "name": f"task-{task_id}",
        "priority": "MEDIUM",
        "status": "PENDING",
        "creation_time": "2024-05-01 12:00:00",
        "start_time": "",
        "end_time": "",
        "execution_time_ms": 1000,
        "timeout_seconds": 30,
        "retry_count": 0,
        "worker_id": -1,
        "progress": 0.0,
    }
    data.update(overrides)
    return data


def make_task(task_id: int, **overrides) -> Task:
    return Task(**task_dict(task_id, **overrides))


def make_poll(tasks=(), completed: int = 0, active: int = 2, total_workers: int = 3) -> PollResult:
    tasks = [t if isinstance(t, Task) else make_task(t) for t in tasks]
    return PollResult(
        status=StatusAggregate(
            total_tasks=len(tasks),
            pending_tasks=sum(1 for t in tasks if t.status.value == "PENDING"),
            running_tasks=sum(1 for t in tasks if t.status.value == "RUNNING"),
            completed_tasks=completed,
            active_workers=active,
        ),
        tasks=tasks,
        roster=WorkerRoster(active_workers=active, total_workers=total_workers),
        worker_stats=[WorkerStat(id=i, running=i, completed=10 * i) for i in range(total_workers)],
    )


# ============================================================================
# Render Sink
# ============================================================================


class RecordingSink(RenderSink):
    def __init__(self):
        self.tasks = []
        self.stats = []
        self.charts = []
        self.errors = []

    async def render_tasks(self, view):
        self.tasks.append(view)

    async def render_stats(self, stats):
        self.stats.append(stats)

    async def render_charts(self, charts):
        self.charts.append(charts)

    async def render_error(self, message):
        self.errors.append(message)


@pytest.fixture
def sink():
    return RecordingSink()


# ============================================================================
# In-memory client for poller tests
# ============================================================================


class FakeClient:
    """fetch_all returns queued results or raises queued errors. gated=True holds each call until released."""

    def __init__(self, results: List = None, gated: bool = False):
        self.results = list(results or [])
        self.gated = gated
        self.calls = 0
        self.pending: List[asyncio.Future] = []

    async def fetch_all(self) -> PollResult:
        self.calls += 1
        if self.gated:
            fut = asyncio.get_running_loop().create_future()
            self.pending.append(fut)
            outcome = await fut
        else:
            outcome = self.results.pop(0) if self.results else make_poll()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def release(self, index: int, outcome):
        self.pending[index].set_result(outcome)


@pytest.fixture
def fake_client():
    return FakeClient()


def api_error(message="connection refused"):
    return SchedulerApiError("/api/status", message)


# ============================================================================
# Fake scheduler backend (real HTTP)
# ============================================================================


class FakeScheduler:
    def __init__(self):
        self.tasks = [task_dict(1, status="COMPLETED"), task_dict(2, status="RUNNING", worker_id=0)]
        self.status = {
            "total_tasks": 2, "completed_tasks": 1, "failed_tasks": 0, "timeout_tasks": 0,
            "pending_tasks": 0, "running_tasks": 1, "active_workers": 2,
            "queue_size": 2, "queue_capacity": 100,
        }
        self.workers = {"active_workers": 2, "total_workers": 3, "scheduler_pid": 4242}
        self.worker_stats = [{"id": 0, "running": 1, "completed": 1}, {"id": 1, "running": 0, "completed": 0}]
        self.responses = {
            "/api/add_task": {"success": True, "task_id": 3},
            "/api/cancel_task": {"success": True},
            "/api/simulate": {"success": True, "total": 12, "message": "ok"},
        }
        self.broken = set()
        self.received = []
        self.hits = {}
        self.url = ""

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/status", self._json(lambda: self.status))
        app.router.add_get("/api/tasks", self._json(lambda: {"tasks": self.tasks}))
        app.router.add_get("/api/workers", self._json(lambda: self.workers))
        app.router.add_get("/api/worker_stats", self._json(lambda: {"workers": self.worker_stats}))
        for path in self.responses:
            app.router.add_post(path, self._action(path))
        app.router.add_get("/api/export/csv", self._text("id,name\n1,task-1\n", "text/csv"))
        app.router.add_get("/api/export/json", self._text('{"tasks": []}', "application/json"))
        return app

    def _count(self, path):
        self.hits[path] = self.hits.get(path, 0) + 1

    def _json(self, body):
        async def handler(request):
            self._count(request.path)
            if request.path in self.broken:
                return web.Response(status=500, text="boom")
            return web.json_response(body())
        return handler

    def _action(self, path):
        async def handler(request):
            self._count(path)
            self.received.append((path, await request.json()))
            return web.json_response(self.responses[path])
        return handler

    def _text(self, text, content_type):
        async def handler(request):
            self._count(request.path)
            return web.Response(text=text, content_type=content_type)
        return handler


@pytest.fixture
async def backend():
    fake = FakeScheduler()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("/"))
    yield fake
    await server.close()


@pytest.fixture
async def api(backend):
    client = SchedulerClient(backend.url, timeout=2)
    yield client
    await client.close()
