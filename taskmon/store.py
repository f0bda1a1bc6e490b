"""
Per-session monitor state: the previous-poll snapshot, the completed-count
baseline, the throughput window and the current filters.

Only a poll cycle's completion path writes to this state.
"""

from collections import deque
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Tuple

from taskmon.metrics import compute_delta
from taskmon.models import Filters, SeriesPoint, Task

MAX_DATA_POINTS = 30


class SnapshotStore:
    """task id -> task as seen on the previous poll. One poll of history, no more."""

    def __init__(self):
        self._tasks: Dict[int, Task] = {}
        self.seeded = False

    def __contains__(self, task_id: int) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, task_id: int) -> Optional[Task]:
        return self._tasks.get(task_id)

    def is_new(self, task_id: int) -> bool:
        # Nothing is new until the first poll has seeded the store
        return self.seeded and task_id not in self._tasks

    def replace(self, tasks: Iterable[Task]):
        self._tasks = {t.id: t for t in tasks}
        self.seeded = True

    def reset(self):
        self._tasks = {}
        self.seeded = False


class TimeSeriesBuffer:
    """Fixed-capacity (label, value) window. Appends at the tail, evicts from the head."""

    def __init__(self, capacity: int = MAX_DATA_POINTS):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._points: Deque[Tuple[str, int]] = deque(maxlen=capacity)

    def push(self, label: str, value: int):
        self._points.append((label, value))

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        return iter(self._points)

    @property
    def labels(self) -> List[str]:
        return [label for label, _ in self._points]

    @property
    def values(self) -> List[int]:
        return [value for _, value in self._points]

    def points(self) -> List[SeriesPoint]:
        return [SeriesPoint(label=label, value=value) for label, value in self._points]

    def clear(self):
        self._points.clear()


class MonitorSession:
    """Everything the monitor remembers between polls, for one page session."""

    def __init__(self, capacity: int = MAX_DATA_POINTS):
        self.snapshot = SnapshotStore()
        self.throughput = TimeSeriesBuffer(capacity)
        self.filters = Filters()
        self.last_completed: Optional[int] = None
        self.last_tasks: List[Task] = []

    def record_completed(self, completed: int) -> int:
        delta = compute_delta(completed, self.last_completed)
        self.last_completed = completed
        return delta

    def find_task(self, task_id: int) -> Optional[Task]:
        for task in self.last_tasks:
            if task.id == task_id:
                return task
        return None

    def reset(self):
        self.snapshot.reset()
        self.throughput.clear()
        self.filters = Filters()
        self.last_completed = None
        self.last_tasks = []
