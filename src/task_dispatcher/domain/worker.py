from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .task import utcnow


class WorkerStatus(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


class WorkerRecord(BaseModel):
    """
    Scheduler-side view of a registered worker.
    """
    id: str = Field(..., description="Worker identity")
    status: WorkerStatus = WorkerStatus.IDLE
    tasks_processed: int = 0
    current_task: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    last_heartbeat: datetime = Field(default_factory=utcnow)
    pid: Optional[int] = Field(None, description="OS process id of the worker")

    def uptime_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.started_at).total_seconds()


class WorkerMessageType(str, Enum):
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"


class WorkerMessage(BaseModel):
    """
    Outcome notification sent from a worker process to its supervisor.
    """
    type: WorkerMessageType
    worker_id: str
    task_id: str
    duration_ms: float = 0.0
    error: Optional[str] = None
