"""
Reconciler: turns a fetched task list into the filtered, sorted, annotated
rows the task table shows.
"""

import logging
from typing import List

from taskmon.models import (
    ALL,
    PRIORITY_TOKENS,
    STATUS_TOKENS,
    Filters,
    RenderView,
    Task,
    TaskRow,
    TaskStatus,
)
from taskmon.store import MonitorSession, SnapshotStore

log = logging.getLogger(__name__)

ROW_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def matches(task: Task, filters: Filters) -> bool:
    if filters.status != ALL and task.status.value != filters.status:
        return False
    if filters.priority != ALL and task.priority.value != filters.priority:
        return False
    return True


def build_row(task: Task, is_new: bool) -> TaskRow:
    return TaskRow(
        task=task,
        is_new=is_new,
        priority_token=PRIORITY_TOKENS[task.priority],
        status_token=STATUS_TOKENS[task.status],
        worker_label=f"Worker {task.worker_id}" if task.is_assigned else "-",
        created_label=task.creation_time.strftime(ROW_TIME_FORMAT) if task.creation_time else "-",
        progress=min(100.0, max(0.0, task.progress)),
        cancellable=task.status == TaskStatus.PENDING,
    )


def compute_view(tasks: List[Task], filters: Filters, snapshot: SnapshotStore) -> RenderView:
    """Filter, sort newest first and flag ids the snapshot has not seen. Does not touch the snapshot."""
    selected = [t for t in tasks if matches(t, filters)]
    selected.sort(key=lambda t: t.id, reverse=True)
    rows = [build_row(t, snapshot.is_new(t.id)) for t in selected]
    return RenderView(rows=rows, total=len(tasks), filters=filters)


class Reconciler:
    def __init__(self, session: MonitorSession):
        self.session = session

    def reconcile(self, tasks: List[Task]) -> RenderView:
        """Build the view for a fresh poll, then replace the snapshot with the unfiltered list."""
        session = self.session
        view = compute_view(tasks, session.filters, session.snapshot)
        new_ids = [row.task.id for row in view.rows if row.is_new]
        if new_ids:
            log.debug(f"New tasks since last poll: {new_ids}")
        session.snapshot.replace(tasks)
        session.last_tasks = list(tasks)
        return view

    def refilter(self, filters: Filters) -> RenderView:
        """Re-run against the last fetched list for new filters. No fetch, no snapshot update."""
        self.session.filters = filters
        return compute_view(self.session.last_tasks, filters, self.session.snapshot)
