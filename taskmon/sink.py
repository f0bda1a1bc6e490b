"""
Render Sinks: where reconciled views and metrics end up.

The poller and the action gateway only talk to the RenderSink interface.
WebSocketSink paints connected browsers; LogSink writes one line per cycle
for headless runs.
"""

import logging
from typing import Dict, Optional, Set

from fastapi import WebSocket

from taskmon.models import ChartsView, RenderView, StatsView

log = logging.getLogger(__name__)


class RenderSink:
    """Interface. Subclasses override what they paint."""

    async def render_tasks(self, view: RenderView):
        pass

    async def render_stats(self, stats: StatsView):
        pass

    async def render_charts(self, charts: ChartsView):
        pass

    async def render_error(self, message: str):
        pass


class WebSocketSink(RenderSink):
    """Broadcasts each render as a typed JSON message to every connected browser."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        # Last message per type, replayed to browsers that connect mid-session
        self.latest: Dict[str, dict] = {}

    async def connect(self, websocket: WebSocket):
        self.clients.add(websocket)
        for message in list(self.latest.values()):
            await websocket.send_json(message)

    def disconnect(self, websocket: WebSocket):
        self.clients.discard(websocket)

    async def broadcast(self, message: dict):
        self.latest[message["type"]] = message
        for ws in list(self.clients):
            try:
                await ws.send_json(message)
            except Exception as e:
                log.debug(f"Dropping websocket client: {e}")
                self.clients.discard(ws)

    async def render_tasks(self, view: RenderView):
        await self.broadcast({"type": "tasks", "data": view.model_dump(mode="json")})

    async def render_stats(self, stats: StatsView):
        self.latest.pop("error", None)
        await self.broadcast({"type": "stats", "data": stats.model_dump(mode="json")})

    async def render_charts(self, charts: ChartsView):
        await self.broadcast({"type": "charts", "data": charts.model_dump(mode="json")})

    async def render_error(self, message: str):
        await self.broadcast({"type": "error", "data": {"message": message, "stale": True}})


class LogSink(RenderSink):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or log

    async def render_tasks(self, view: RenderView):
        new = sum(1 for row in view.rows if row.is_new)
        self.log.info(f"tasks: {len(view.rows)}/{view.total} shown, {new} new")

    async def render_stats(self, stats: StatsView):
        s = stats.status
        active = sum(1 for w in stats.workers if w.active)
        self.log.info(
            f"status: {s.total_tasks} total | {s.pending_tasks} pending | "
            f"{s.running_tasks} running | {s.completed_tasks} done | "
            f"{s.failed_tasks} failed | workers {active}/{len(stats.workers)}"
        )

    async def render_charts(self, charts: ChartsView):
        if charts.throughput:
            last = charts.throughput[-1]
            self.log.info(f"throughput @ {last.label}: +{last.value}")

    async def render_error(self, message: str):
        self.log.warning(f"STALE: {message}")
