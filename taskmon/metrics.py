"""
Derived metrics the scheduler API does not compute itself.

Pure functions only: counters and timestamps in, plain data out.
"""

from datetime import datetime
from typing import Dict, List, Optional

from taskmon.models import (
    ChartsView,
    SeriesPoint,
    StatusAggregate,
    Task,
    TaskTimings,
    WorkerCard,
    WorkerRoster,
    WorkerStat,
)

UNAVAILABLE = "N/A"


def compute_delta(current: int, previous: Optional[int]) -> int:
    """Throughput since the previous reading. 0 on the first reading or a counter reset."""
    if previous is None:
        return 0
    return max(0, current - previous)


def _seconds_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds()


def compute_timings(task: Task) -> TaskTimings:
    return TaskTimings(
        wait_s=_seconds_between(task.creation_time, task.start_time),
        exec_s=_seconds_between(task.start_time, task.end_time),
        turnaround_s=_seconds_between(task.creation_time, task.end_time),
    )


def fmt_seconds(value: Optional[float]) -> str:
    if value is None:
        return UNAVAILABLE
    return f"{value:.1f}s"


def timings_display(timings: TaskTimings) -> Dict[str, str]:
    return {
        "wait": fmt_seconds(timings.wait_s),
        "exec": fmt_seconds(timings.exec_s),
        "turnaround": fmt_seconds(timings.turnaround_s),
    }


def status_distribution(status: StatusAggregate) -> Dict[str, int]:
    # Built from the four counters; total_tasks may disagree with them
    return {
        "pending": status.pending_tasks,
        "running": status.running_tasks,
        "completed": status.completed_tasks,
        "failed": status.failed_tasks,
    }


def worker_cards(roster: WorkerRoster, stats: List[WorkerStat]) -> List[WorkerCard]:
    by_id = {s.id: s for s in stats}
    total = max(0, roster.total_workers)
    active = min(max(0, roster.active_workers), total)
    cards = []
    for i in range(total):
        stat = by_id.get(i)
        cards.append(WorkerCard(
            id=i,
            label=f"Worker {i}",
            active=i < active,
            running=stat.running if stat else 0,
            completed=stat.completed if stat else 0,
        ))
    return cards


def build_charts(
    throughput: List[SeriesPoint],
    status: StatusAggregate,
    stats: List[WorkerStat],
) -> ChartsView:
    """Assemble chart data. Worker series are rebuilt wholesale, aligned by index."""
    ordered = sorted(stats, key=lambda s: s.id)
    return ChartsView(
        throughput=list(throughput),
        status_distribution=status_distribution(status),
        worker_labels=[f"Worker {s.id}" for s in ordered],
        worker_running=[s.running for s in ordered],
        worker_completed=[s.completed for s in ordered],
    )
