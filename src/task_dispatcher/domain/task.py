import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(ZoneInfo("UTC"))


class TaskType(str, Enum):
    EMAIL = "email"
    IMAGE_PROCESSING = "image-processing"
    DATA_ANALYSIS = "data-analysis"
    REPORT_GENERATION = "report-generation"
    NOTIFICATION = "notification"
    FILE_UPLOAD = "file-upload"
    DATABASE_BACKUP = "database-backup"
    COMPUTATION = "computation"
    HTTP_REQUEST = "http-request"
    DEFAULT = "default"


class TaskPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Lane scan order used by the scheduler.
PRIORITY_ORDER = (TaskPriority.HIGH, TaskPriority.NORMAL, TaskPriority.LOW)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class Task(BaseModel):
    """
    A unit of work submitted to the scheduler.

    The scheduler owns every status transition:

        pending -> processing -> completed | retrying | failed
        retrying -> pending (after the backoff delay)
    """
    id: str = Field(default_factory=lambda: f"tsk_{uuid.uuid4().hex}", description="Unique task identifier")
    type: str = Field(TaskType.DEFAULT.value, min_length=1, description="Kind of work, used to resolve a handler")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Data payload passed to the handler")
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.PENDING
    retries: int = Field(0, ge=0, description="Number of retries already scheduled")
    max_retries: int = Field(3, ge=0, description="Retry ceiling before the task fails permanently")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    worker_id: Optional[str] = Field(None, description="Worker that owns the task while processing")
    last_error: Optional[str] = None
    result: Optional[Any] = Field(None, description="Handler result, only present on completed snapshots")

    @field_validator("type", mode="before")
    def normalize_type(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            return v.value
        return v

    @field_validator("payload", mode="before")
    def decode_payload(cls, v: Any) -> Any:
        # Submitters may send the payload as a JSON object string.
        if isinstance(v, (str, bytes)):
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"payload is not valid JSON: {e}")
        return v

    @property
    def can_retry(self) -> bool:
        return self.retries < self.max_retries

    def touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or utcnow()

    def summary(self) -> Dict[str, Any]:
        """
        Short representation returned by the submission interface.
        """
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }
