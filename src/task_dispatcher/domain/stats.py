from typing import Dict

from pydantic import BaseModel, Field

from .task import TaskPriority


def _empty_lanes() -> Dict[TaskPriority, int]:
    return {priority: 0 for priority in TaskPriority}


class QueueStats(BaseModel):
    """
    Aggregate counters maintained by the scheduler.

    Counters change incrementally on each task transition. ``queue_lengths``
    and ``processing_count`` are filled in from the live lanes when a
    snapshot is taken.
    """
    tasks_created: int = 0
    pending_tasks: int = 0
    processing_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    retried_tasks: int = 0
    retrying_tasks: int = Field(0, description="Tasks waiting out a backoff delay")
    avg_processing_time: float = Field(0.0, description="Running mean processing time in milliseconds")
    active_workers: int = 0
    queue_lengths: Dict[TaskPriority, int] = Field(default_factory=_empty_lanes)
    processing_count: int = 0

    @property
    def total_queued(self) -> int:
        return sum(self.queue_lengths.values())

    def accounted_tasks(self) -> int:
        return (
            self.pending_tasks
            + self.processing_tasks
            + self.retrying_tasks
            + self.completed_tasks
            + self.failed_tasks
        )


class QueueSummary(BaseModel):
    """
    Dashboard-oriented digest of the queue state.
    """
    total_tasks: int
    queued_tasks: int
    processing_tasks: int
    completed_tasks: int
    failed_tasks: int
    success_rate: float = Field(..., description="Completed / created, in percent")
    active_workers: int
    busy_workers: int
    idle_workers: int
    avg_processing_time: float
    queue_health: str

    @staticmethod
    def health_for(queued: int) -> str:
        if queued < 100:
            return "healthy"
        if queued < 500:
            return "moderate"
        return "overloaded"
