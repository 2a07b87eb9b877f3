"""
Priority Task Dispatching System

This package queues typed units of work and dispatches them to a pool of
worker processes that execute them with bounded, exponentially backed-off
retry.

Core Concepts:

Task:
    A unit of work with a type, a payload and a priority (high, normal or low).
    Tasks move through pending -> processing -> completed | retrying | failed;
    a retrying task returns to pending once its backoff delay elapses.

Scheduler:
    The single owner of the priority lanes, the task records and the
    statistics. Lanes are FIFO and are drained in strict priority order.

Worker:
    A polling loop that fetches tasks from the scheduler, runs the handler
    registered for the task type and reports the outcome.

Supervisor:
    Serves the scheduler to a pool of worker processes and respawns the ones
    that crash.

Relationships:
    - The scheduler publishes lifecycle events on an EventBus for observers.
    - Workers reach the scheduler only through a SchedulerClient.
"""

from .domain import Task, TaskPriority, TaskStatus, TaskType
from .events import EventBus
from .handler_registry import HandlerRegistry
from .scheduler import Scheduler
from .worker import Worker

__all__ = [
    "Task", "TaskPriority", "TaskStatus", "TaskType",
    "EventBus", "HandlerRegistry", "Scheduler", "Worker",
]
