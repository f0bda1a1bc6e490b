"""
Async HTTP client for the scheduler API.

Every failure to get a usable response (connection refused, timeout, non-2xx,
bad JSON) is raised as SchedulerApiError. A response with "success": false is
not a transport failure and is returned as-is.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from taskmon.models import (
    ExportFormat,
    PollResult,
    StatusAggregate,
    Task,
    WorkerRoster,
    WorkerStat,
)

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class SchedulerApiError(Exception):
    def __init__(self, path: str, message: str, status: Optional[int] = None):
        self.path = path
        self.status = status
        prefix = f"{path} -> HTTP {status}" if status is not None else path
        super().__init__(f"{prefix}: {message}")


class SchedulerClient:
    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None,
                       as_text: bool = False):
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, json=payload, timeout=self.timeout) as resp:
                if resp.status >= 400:
                    body = (await resp.text())[:200]
                    raise SchedulerApiError(path, body or resp.reason or "request failed", resp.status)
                if as_text:
                    return await resp.text()
                return await resp.json(content_type=None)
        except SchedulerApiError:
            raise
        except asyncio.TimeoutError:
            raise SchedulerApiError(path, "timed out") from None
        except (aiohttp.ClientError, ValueError) as e:
            raise SchedulerApiError(path, str(e) or type(e).__name__) from e

    async def _get_json(self, path: str) -> Dict[str, Any]:
        data = await self._request("GET", path)
        if not isinstance(data, dict):
            raise SchedulerApiError(path, f"expected a JSON object, got {type(data).__name__}")
        return data

    async def _post_json(self, path: str, payload: dict) -> Dict[str, Any]:
        data = await self._request("POST", path, payload)
        if not isinstance(data, dict):
            raise SchedulerApiError(path, f"expected a JSON object, got {type(data).__name__}")
        return data

    # ── Reads ────────────────────────────────────────────────────────────────

    async def fetch_status(self) -> StatusAggregate:
        return StatusAggregate(**await self._get_json("/api/status"))

    async def fetch_tasks(self) -> list:
        data = await self._get_json("/api/tasks")
        return [Task(**t) for t in data.get("tasks") or []]

    async def fetch_workers(self) -> WorkerRoster:
        return WorkerRoster(**await self._get_json("/api/workers"))

    async def fetch_worker_stats(self) -> list:
        data = await self._get_json("/api/worker_stats")
        return [WorkerStat(**w) for w in data.get("workers") or []]

    async def fetch_all(self) -> PollResult:
        """Fetch the four poll resources concurrently. Any failure fails the whole poll."""
        status, tasks, roster, worker_stats = await asyncio.gather(
            self.fetch_status(),
            self.fetch_tasks(),
            self.fetch_workers(),
            self.fetch_worker_stats(),
        )
        return PollResult(status=status, tasks=tasks, roster=roster, worker_stats=worker_stats)

    # ── Writes ───────────────────────────────────────────────────────────────

    async def add_task(self, name: str, priority: str, duration: int) -> Dict[str, Any]:
        return await self._post_json("/api/add_task", {
            "name": name,
            "priority": priority,
            "duration": duration,
        })

    async def cancel_task(self, task_id: int) -> Dict[str, Any]:
        return await self._post_json("/api/cancel_task", {"task_id": task_id})

    async def simulate(self, scenario: str, count: int, interval: int) -> Dict[str, Any]:
        return await self._post_json("/api/simulate", {
            "scenario": scenario,
            "count": count,
            "interval": interval,
        })

    async def export(self, fmt: ExportFormat) -> str:
        return await self._request("GET", f"/api/export/{fmt.value}", as_text=True)
