from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .task import utcnow


class EventType(str, Enum):
    TASK_CREATED = "task:created"
    TASK_PROCESSING = "task:processing"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    TASK_RETRYING = "task:retrying"
    WORKER_REGISTERED = "worker:registered"
    WORKER_UNREGISTERED = "worker:unregistered"


class QueueEvent(BaseModel):
    """
    Lifecycle event published by the scheduler.

    ``task`` carries a fragment of the task for ``task:*`` events and
    ``worker`` a fragment of the worker record for ``worker:*`` events.
    """
    event: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    task: Optional[Dict[str, Any]] = None
    worker: Optional[Dict[str, Any]] = None

    @property
    def is_task_event(self) -> bool:
        return self.event.value.startswith("task:")
