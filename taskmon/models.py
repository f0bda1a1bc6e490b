"""
Wire and view models for the task monitor.

Wire models mirror the JSON the scheduler API returns. View models are the
render-ready structures handed to a Render Sink.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

BACKEND_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
ALL = "all"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value) -> "Priority":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"unknown priority: {value!r}") from None


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


# Display tokens used by the page for badge styling
PRIORITY_TOKENS: Dict[Priority, str] = {
    Priority.LOW: "priority-low",
    Priority.MEDIUM: "priority-medium",
    Priority.HIGH: "priority-high",
    Priority.CRITICAL: "priority-critical",
}

STATUS_TOKENS: Dict[TaskStatus, str] = {
    TaskStatus.PENDING: "status-pending",
    TaskStatus.RUNNING: "status-running",
    TaskStatus.COMPLETED: "status-completed",
    TaskStatus.FAILED: "status-failed",
    TaskStatus.TIMEOUT: "status-timeout",
}

UNASSIGNED_WORKER = -1


def parse_backend_time(value) -> Optional[datetime]:
    """Parse a backend timestamp to naive local time. Empty string and None mean absent."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            return datetime.strptime(text, BACKEND_TIME_FORMAT)
        except ValueError:
            parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


# ── Wire models ────────────────────────────────────────────────────────────────

class Task(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    name: str = ""
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    worker_id: int = UNASSIGNED_WORKER
    creation_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    execution_time_ms: int = 0
    timeout_seconds: int = 0
    retry_count: int = 0

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_any_case(cls, v):
        return Priority.parse(v) if isinstance(v, str) else v

    @field_validator("status", mode="before")
    @classmethod
    def _status_any_case(cls, v):
        if isinstance(v, TaskStatus):
            return v
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("progress", mode="before")
    @classmethod
    def _progress_default(cls, v):
        return 0.0 if v is None else v

    @field_validator("creation_time", "start_time", "end_time", mode="before")
    @classmethod
    def _backend_time(cls, v):
        return parse_backend_time(v)

    @property
    def is_assigned(self) -> bool:
        return self.worker_id >= 0


class StatusAggregate(BaseModel):
    """Counters from /api/status. total_tasks is not checked against the parts."""
    model_config = ConfigDict(extra="ignore")

    total_tasks: int = 0
    running_tasks: int = 0
    pending_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    timeout_tasks: int = 0
    active_workers: int = 0
    queue_size: int = 0
    queue_capacity: int = 0


class WorkerRoster(BaseModel):
    model_config = ConfigDict(extra="ignore")

    active_workers: int = 0
    total_workers: int = 0
    scheduler_pid: Optional[int] = None


class WorkerStat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    running: int = 0
    completed: int = 0


class PollResult(BaseModel):
    """Everything one poll cycle fetched. All four parts or nothing."""
    status: StatusAggregate
    tasks: List[Task]
    roster: WorkerRoster
    worker_stats: List[WorkerStat]


# ── Actions ────────────────────────────────────────────────────────────────────

class ActionResult(BaseModel):
    success: bool
    message: str = ""
    error: Optional[str] = None
    task_id: Optional[int] = None
    total: Optional[int] = None


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class ExportPayload(BaseModel):
    format: ExportFormat
    filename: str
    media_type: str
    content: str


# ── View models ────────────────────────────────────────────────────────────────

class Filters(BaseModel):
    """Status and priority filters; "all" disables a filter."""
    status: str = ALL
    priority: str = ALL

    @field_validator("status", "priority", mode="before")
    @classmethod
    def _normalize(cls, v):
        if isinstance(v, Enum):
            v = v.value
        text = str(v or ALL).strip()
        return ALL if text.lower() == ALL else text.upper()


class TaskRow(BaseModel):
    task: Task
    is_new: bool = False
    priority_token: str
    status_token: str
    worker_label: str
    created_label: str
    progress: float
    cancellable: bool


class RenderView(BaseModel):
    rows: List[TaskRow] = Field(default_factory=list)
    total: int = 0
    filters: Filters = Field(default_factory=Filters)

    @property
    def is_empty(self) -> bool:
        return not self.rows


class TaskTimings(BaseModel):
    wait_s: Optional[float] = None
    exec_s: Optional[float] = None
    turnaround_s: Optional[float] = None


class TaskDetail(BaseModel):
    task: Task
    timings: TaskTimings
    display: Dict[str, str]


class WorkerCard(BaseModel):
    id: int
    label: str
    active: bool
    running: int = 0
    completed: int = 0


class StatsView(BaseModel):
    status: StatusAggregate
    roster: WorkerRoster
    workers: List[WorkerCard]
    updated_at: datetime
    stale: bool = False


class SeriesPoint(BaseModel):
    label: str
    value: int


class ChartsView(BaseModel):
    throughput: List[SeriesPoint]
    status_distribution: Dict[str, int]
    worker_labels: List[str]
    worker_running: List[int]
    worker_completed: List[int]
