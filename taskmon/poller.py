"""
Poll Scheduler: the fetch -> reconcile -> render loop.

Single event loop, no threads. The timer spawns a cycle every interval and
never waits for it, so a slow backend can leave two cycles in flight. Each
cycle takes a sequence number when it starts and its result (or error) is
applied only if no later cycle has been applied and stop() has not been
called since it began. Late results are dropped instead of painted out of
order. Applying and painting happen under one lock, so a cycle that suspends
mid-render is never overtaken by a newer one.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Set

from taskmon.client import SchedulerApiError
from taskmon.metrics import build_charts, compute_timings, timings_display, worker_cards
from taskmon.models import Filters, PollResult, RenderView, StatsView, TaskDetail
from taskmon.reconciler import Reconciler
from taskmon.sink import RenderSink
from taskmon.store import MonitorSession

log = logging.getLogger(__name__)

REFRESH_INTERVAL_MS = 2000
LABEL_FORMAT = "%H:%M:%S"


class PollScheduler:
    def __init__(
        self,
        client,
        sink: RenderSink,
        session: Optional[MonitorSession] = None,
        interval_ms: int = REFRESH_INTERVAL_MS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.client = client
        self.sink = sink
        self.session = session or MonitorSession()
        self.reconciler = Reconciler(self.session)
        self.interval = interval_ms / 1000
        self.clock = clock

        self.auto_refresh = True
        self.visible = True
        self.generation = 0
        self.last_error: Optional[str] = None
        self.last_success: Optional[datetime] = None

        self._seq = 0
        self._applied_seq = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._render_lock = asyncio.Lock()

    # ── Timer ────────────────────────────────────────────────────────────────

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self):
        """Arm the repeating timer. Re-arming replaces the previous timer."""
        self._disarm()
        self._timer = asyncio.get_running_loop().create_task(self._tick_loop())
        log.debug(f"Auto-refresh armed every {self.interval:.1f}s")

    def stop(self):
        """Disarm the timer. Results of cycles still in flight will be ignored."""
        self.generation += 1
        if self._disarm():
            log.debug("Auto-refresh disarmed")

    def _disarm(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    async def _tick_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            if self.auto_refresh:
                self.refresh_now()

    def toggle(self, enabled: bool):
        self.auto_refresh = enabled
        log.info(f"Auto-refresh {'ON' if enabled else 'OFF'}")
        if not enabled:
            self.stop()
        elif self.visible:
            self.start()
            self.refresh_now()

    def set_visible(self, visible: bool):
        if visible == self.visible:
            return
        self.visible = visible
        if not visible:
            log.info("Page hidden, pausing polls")
            self.stop()
        elif self.auto_refresh:
            log.info("Page visible, resuming polls")
            self.start()
            self.refresh_now()

    def refresh_now(self) -> asyncio.Task:
        """Run one cycle outside the timer cadence."""
        task = asyncio.get_running_loop().create_task(self.run_cycle())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def shutdown(self):
        timer = self._timer
        self.stop()
        pending = list(self._inflight)
        for task in pending:
            task.cancel()
        if timer is not None:
            pending.append(timer)
        await asyncio.gather(*pending, return_exceptions=True)

    # ── Cycle ────────────────────────────────────────────────────────────────

    def _is_current(self, generation: int, seq: int) -> bool:
        return generation == self.generation and seq > self._applied_seq

    def _still_painting(self, generation: int, seq: int) -> bool:
        return generation == self.generation and seq == self._applied_seq

    async def run_cycle(self) -> bool:
        """One poll cycle. Returns True if its result was rendered. Never raises."""
        self._seq += 1
        seq = self._seq
        generation = self.generation

        try:
            result = await self.client.fetch_all()
        except asyncio.CancelledError:
            raise
        except SchedulerApiError as e:
            await self._fail(generation, seq, str(e))
            return False
        except Exception as e:
            log.error(f"Unexpected poll error: {e}", exc_info=True)
            await self._fail(generation, seq, f"{type(e).__name__}: {e}")
            return False

        async with self._render_lock:
            if not self._is_current(generation, seq):
                log.debug(f"Dropping superseded poll result #{seq}")
                return False

            self._applied_seq = seq
            view, stats, charts = self.apply(result)
            try:
                for render, payload in ((self.sink.render_stats, stats),
                                        (self.sink.render_tasks, view),
                                        (self.sink.render_charts, charts)):
                    if not self._still_painting(generation, seq):
                        break
                    await render(payload)
            except Exception as e:
                log.error(f"Render failed: {e}", exc_info=True)
        return True

    def apply(self, result: PollResult):
        """Fold a poll result into the session and build what to render."""
        now = self.clock()
        session = self.session

        view = self.reconciler.reconcile(result.tasks)
        delta = session.record_completed(result.status.completed_tasks)
        session.throughput.push(now.strftime(LABEL_FORMAT), delta)

        stats = StatsView(
            status=result.status,
            roster=result.roster,
            workers=worker_cards(result.roster, result.worker_stats),
            updated_at=now,
        )
        charts = build_charts(session.throughput.points(), result.status, result.worker_stats)

        self.last_success = now
        self.last_error = None
        log.debug(f"Poll ok: {len(result.tasks)} tasks, +{delta} completed")
        return view, stats, charts

    async def _fail(self, generation: int, seq: int, message: str):
        async with self._render_lock:
            if not self._is_current(generation, seq):
                return
            # A painted error supersedes older cycles still in flight
            self._applied_seq = seq
            log.warning(f"Poll failed: {message}")
            self.last_error = message
            try:
                await self.sink.render_error(message)
            except Exception as e:
                log.error(f"Render failed: {e}", exc_info=True)

    # ── User-driven views ────────────────────────────────────────────────────

    async def apply_filters(self, filters: Filters) -> RenderView:
        async with self._render_lock:
            view = self.reconciler.refilter(filters)
            await self.sink.render_tasks(view)
        return view

    def task_detail(self, task_id: int) -> Optional[TaskDetail]:
        task = self.session.find_task(task_id)
        if task is None:
            return None
        timings = compute_timings(task)
        return TaskDetail(task=task, timings=timings, display=timings_display(timings))

    def health(self) -> dict:
        return {
            "backend": "ok" if self.last_error is None else "stale",
            "error": self.last_error,
            "auto_refresh": self.auto_refresh,
            "armed": self.armed,
            "visible": self.visible,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }
