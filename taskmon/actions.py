"""
Action Gateway: the mutating requests a user can make from the dashboard.

Each action issues exactly one request and never retries. On success it
schedules a single follow-up poll after a short settle delay. Failures come
back as an ActionResult with the backend's error text, never as exceptions.
"""

import asyncio
import logging
from datetime import datetime
from typing import Set

from taskmon.client import SchedulerApiError, SchedulerClient
from taskmon.models import ActionResult, ExportFormat, ExportPayload, Priority

log = logging.getLogger(__name__)

FOLLOWUP_DELAY_MS = 500

EXPORT_MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
}


class ActionGateway:
    def __init__(self, client: SchedulerClient, poller, followup_delay_ms: int = FOLLOWUP_DELAY_MS):
        self.client = client
        self.poller = poller
        self.followup_delay = followup_delay_ms / 1000
        self._followups: Set[asyncio.TimerHandle] = set()

    def _schedule_followup(self):
        def fire():
            self._followups.discard(handle)
            self.poller.refresh_now()

        handle = asyncio.get_running_loop().call_later(self.followup_delay, fire)
        self._followups.add(handle)

    def close(self):
        """Cancel follow-up polls that have not fired yet."""
        for handle in self._followups:
            handle.cancel()
        self._followups.clear()

    async def _submit(self, action: str, call) -> dict:
        try:
            return await call
        except SchedulerApiError as e:
            log.warning(f"{action} failed: {e}")
            return {"success": False, "error": str(e)}

    def _finish(self, action: str, data: dict, message: str, backend_message: bool = True) -> ActionResult:
        if not data.get("success"):
            error = data.get("error") or data.get("message") or "Unknown error"
            log.warning(f"{action} rejected: {error}")
            return ActionResult(success=False, error=error)
        result = ActionResult(
            success=True,
            message=(backend_message and data.get("message")) or message,
            task_id=data.get("task_id"),
            total=data.get("total"),
        )
        log.info(f"{action}: {result.message}")
        self._schedule_followup()
        return result

    async def add_task(self, name: str, priority, duration: int) -> ActionResult:
        name = (name or "").strip()
        if not name:
            return ActionResult(success=False, error="Task name is required")
        level = Priority.parse(priority)
        data = await self._submit("add_task", self.client.add_task(name, level.value, duration))
        message = f"Task '{name}' submitted"
        if data.get("task_id") is not None:
            message = f"Task '{name}' submitted with ID {data['task_id']}"
        return self._finish("add_task", data, message)

    async def cancel_task(self, task_id: int) -> ActionResult:
        # No local status check: the backend decides what can be cancelled
        data = await self._submit("cancel_task", self.client.cancel_task(task_id))
        return self._finish("cancel_task", data, f"Task {task_id} cancelled")

    async def run_simulation(self, scenario: str, count: int, interval: int) -> ActionResult:
        data = await self._submit("simulate", self.client.simulate(scenario, count, interval))
        total = data.get("total", count)
        return self._finish("simulate", data,
                            f"Simulation '{scenario}' started: {total} tasks created",
                            backend_message=False)

    async def export_snapshot(self, fmt) -> ExportPayload:
        """Fetch the backend's pre-rendered export untouched. Raises SchedulerApiError on failure."""
        if not isinstance(fmt, ExportFormat):
            fmt = ExportFormat(str(fmt).strip().lower())
        content = await self.client.export(fmt)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log.info(f"Exported {fmt.value} snapshot ({len(content)} bytes)")
        return ExportPayload(
            format=fmt,
            filename=f"task_snapshot_{stamp}.{fmt.value}",
            media_type=EXPORT_MEDIA_TYPES[fmt],
            content=content,
        )
