from .task import Task, TaskType, TaskPriority, TaskStatus, PRIORITY_ORDER, utcnow
from .worker import WorkerRecord, WorkerStatus, WorkerMessage, WorkerMessageType
from .stats import QueueStats, QueueSummary
from .event import QueueEvent, EventType

__all__ = [
    "Task", "TaskType", "TaskPriority", "TaskStatus", "PRIORITY_ORDER", "utcnow",
    "WorkerRecord", "WorkerStatus", "WorkerMessage", "WorkerMessageType",
    "QueueStats", "QueueSummary", "QueueEvent", "EventType",
]
