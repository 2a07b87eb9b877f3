import functools
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from task_dispatcher.domain.event import EventType, QueueEvent
from task_dispatcher.domain.stats import QueueStats, QueueSummary
from task_dispatcher.domain.task import Task, TaskPriority, TaskStatus, TaskType, utcnow
from task_dispatcher.domain.worker import WorkerRecord, WorkerStatus
from task_dispatcher.events import EventBus
from task_dispatcher.exceptions import EmptyBatchError, InvalidTaskError
from task_dispatcher.queues import PriorityLanes
from task_dispatcher.storages.memory import InMemoryTaskStore
from task_dispatcher.storages.protocol import TaskStore

logger = logging.getLogger(__name__)


def _coerce_priority(priority: Any) -> TaskPriority:
    if priority is None:
        return TaskPriority.NORMAL
    try:
        return TaskPriority(priority)
    except (ValueError, TypeError):
        logger.warning("Unknown priority %r, using normal", priority)
        return TaskPriority.NORMAL


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def start_thread_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class Scheduler:
    """
    Priority queue manager and owner of every task state transition.

    Every public method runs under a single re-entrant lock, so the
    scheduler can be shared by manager server threads, retry timer threads
    and in-process workers. Lifecycle events are published on ``events``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        store: Optional[TaskStore] = None,
        events: Optional[EventBus] = None,
        timer_factory: TimerFactory = start_thread_timer,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if retry_delay < 0:
            raise ValueError("retry_delay must not be negative")
        self.max_retries: int = max_retries
        self.retry_delay: float = retry_delay
        self.store: TaskStore = store if store is not None else InMemoryTaskStore()
        self.events: EventBus = events if events is not None else EventBus()
        self.lanes: PriorityLanes = PriorityLanes()
        self.workers: Dict[str, WorkerRecord] = {}
        self.stats: QueueStats = QueueStats()
        self._timer_factory: TimerFactory = timer_factory
        self._retry_timers: Dict[str, TimerHandle] = {}
        self._clock = clock
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "Scheduler":
        kwargs.setdefault("events", EventBus(default_maxsize=settings.event_buffer_size))
        return cls(max_retries=settings.max_retries, retry_delay=settings.retry_delay, **kwargs)

    # Submission

    def submit(
        self,
        task_type: Union[str, TaskType],
        payload: Optional[Dict[str, Any]] = None,
        priority: Union[str, TaskPriority, None] = TaskPriority.NORMAL,
        max_retries: Optional[int] = None,
    ) -> Task:
        """
        Create a pending task and append it to the tail of its priority lane.

        Args:
            task_type: Kind of work; resolved to a handler by the worker.
            payload: Data handed to the handler.
            priority: ``high``, ``normal`` (default) or ``low``. Anything
                else is logged and treated as ``normal``.
            max_retries: Retry ceiling, defaults to the scheduler's setting.

        Raises:
            InvalidTaskError: If the type is missing or the payload is invalid.
        """
        if not task_type:
            raise InvalidTaskError("Task type is required")
        task_priority = _coerce_priority(priority)

        with self._lock:
            now = self._clock()
            try:
                task = Task(
                    type=task_type,
                    payload=payload or {},
                    priority=task_priority,
                    max_retries=self.max_retries if max_retries is None else max_retries,
                    created_at=now,
                    updated_at=now,
                )
            except ValidationError as e:
                raise InvalidTaskError(f"Invalid task: {e}")

            self.store.add_task(task)
            self.lanes.push(task.id, task.priority)
            self.stats.tasks_created += 1
            self.stats.pending_tasks += 1

            logger.debug("Task %s (%s) queued with %s priority", task.id, task.type, task.priority.value)
            self._emit(EventType.TASK_CREATED, task={
                "id": task.id,
                "type": task.type,
                "priority": task.priority.value,
                "status": task.status.value,
            })
            return task.model_copy(deep=True)

    def submit_batch(self, entries: Iterable[Mapping[str, Any]]) -> List[Task]:
        """
        Submit many tasks at once.

        Entries without a ``type`` are skipped and unknown priorities fall
        back to ``normal``. The number of accepted entries is the length of
        the returned list.
        """
        entries = list(entries)
        if not entries:
            raise EmptyBatchError("Tasks array is required and must not be empty")

        created: List[Task] = []
        with self._lock:
            for entry in entries:
                task_type = entry.get("type")
                if not task_type:
                    continue
                created.append(self.submit(
                    task_type,
                    entry.get("payload") or {},
                    priority=entry.get("priority"),
                    max_retries=entry.get("max_retries"),
                ))
        logger.info("Batch submission accepted %d of %d tasks", len(created), len(entries))
        return created

    # Dispatch

    def fetch_next(self, worker_id: str) -> Optional[Task]:
        """
        Hand the oldest task of the highest non-empty lane to ``worker_id``.

        Returns None when every lane is empty; the caller polls again later.
        """
        with self._lock:
            while True:
                popped = self.lanes.pop_next()
                if popped is None:
                    return None
                task_id, _ = popped
                task = self.store.get_task(task_id)
                if task is not None:
                    break
                # Orphan id with no record behind it; drop it and keep scanning.
                self.lanes.release(task_id)
                logger.warning("Dropped queued id %s with no task record", task_id)

            now = self._clock()
            task.status = TaskStatus.PROCESSING
            task.worker_id = worker_id
            task.started_at = now
            task.touch(now)
            self.stats.pending_tasks -= 1
            self.stats.processing_tasks += 1

            logger.debug("Task %s dispatched to %s", task.id, worker_id)
            self._emit(EventType.TASK_PROCESSING, task={
                "id": task.id,
                "worker_id": worker_id,
                "type": task.type,
            })
            return task.model_copy(deep=True)

    def complete(self, task_id: str, result: Any = None) -> bool:
        """
        Mark an in-flight task as completed and store its result.

        Returns False, without touching any counter, if the task is unknown
        or not currently processing.
        """
        with self._lock:
            task = self._in_flight_task(task_id)
            if task is None:
                return False

            now = self._clock()
            self.lanes.release(task_id)
            task.status = TaskStatus.COMPLETED
            task.completed_at = now
            task.touch(now)
            self.store.set_result(task_id, result)

            self.stats.processing_tasks -= 1
            self.stats.completed_tasks += 1
            processing_time = (now - (task.started_at or task.created_at)).total_seconds() * 1000
            self._update_average_processing_time(processing_time)

            logger.debug("Task %s completed in %.0fms", task_id, processing_time)
            self._emit(EventType.TASK_COMPLETED, task={
                "id": task_id,
                "type": task.type,
                "worker_id": task.worker_id,
                "processing_time": processing_time,
            })
            return True

    def fail(self, task_id: str, error: Union[str, BaseException]) -> bool:
        """
        Record a failed attempt of an in-flight task.

        While ``retries < max_retries`` the task moves to ``retrying`` and is
        re-enqueued at the tail of its lane after ``retry_delay * 2**retries``
        seconds. Otherwise it fails permanently.

        Returns False, without touching any counter, if the task is unknown
        or not currently processing.
        """
        message = str(error)
        with self._lock:
            task = self._in_flight_task(task_id)
            if task is None:
                return False

            now = self._clock()
            self.lanes.release(task_id)
            self.stats.processing_tasks -= 1
            task.last_error = message
            task.touch(now)

            if task.can_retry:
                delay = self.retry_delay_for(task.retries)
                task.status = TaskStatus.RETRYING
                task.retries += 1
                task.next_retry_at = now + timedelta(seconds=delay)
                self.stats.retrying_tasks += 1
                self._retry_timers[task_id] = self._timer_factory(
                    delay, functools.partial(self._requeue, task_id)
                )
                logger.info(
                    "Task %s failed (%s), retry %d/%d in %.2fs",
                    task_id, message, task.retries, task.max_retries, delay,
                )
            else:
                task.status = TaskStatus.FAILED
                task.failed_at = now
                self.stats.failed_tasks += 1
                logger.warning("Task %s failed permanently after %d retries: %s", task_id, task.retries, message)
                self._emit(EventType.TASK_FAILED, task={
                    "id": task_id,
                    "type": task.type,
                    "error": message,
                })
            return True

    def retry_delay_for(self, attempt: int) -> float:
        """
        Backoff delay in seconds before the retry following failure ``attempt`` (0-indexed).
        """
        return self.retry_delay * (2 ** attempt)

    def _requeue(self, task_id: str) -> None:
        with self._lock:
            self._retry_timers.pop(task_id, None)
            task = self.store.get_task(task_id)
            if task is None or task.status != TaskStatus.RETRYING:
                # Cleared while the backoff was running.
                logger.debug("Skipping re-enqueue of %s, task no longer waiting for retry", task_id)
                return

            task.status = TaskStatus.PENDING
            task.next_retry_at = None
            task.touch(self._clock())
            self.lanes.push(task_id, task.priority)
            self.stats.retrying_tasks -= 1
            self.stats.pending_tasks += 1
            self.stats.retried_tasks += 1

            logger.debug("Task %s re-enqueued with %s priority", task_id, task.priority.value)
            self._emit(EventType.TASK_RETRYING, task={
                "id": task_id,
                "retries": task.retries,
                "max_retries": task.max_retries,
            })

    # Queries

    def get_status(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self.store.get_task(task_id)
            if task is None:
                return None
            snapshot = task.model_copy(deep=True)
            if task.status == TaskStatus.COMPLETED:
                snapshot.result = self.store.get_result(task_id)
            return snapshot

    def get_stats(self) -> QueueStats:
        with self._lock:
            snapshot = self.stats.model_copy(deep=True)
            snapshot.queue_lengths = self.lanes.lengths()
            snapshot.processing_count = self.lanes.in_flight_count
            snapshot.active_workers = len(self.workers)
            return snapshot

    def get_summary(self) -> QueueSummary:
        with self._lock:
            stats = self.get_stats()
            busy = sum(1 for worker in self.workers.values() if worker.status == WorkerStatus.BUSY)
            queued = stats.total_queued
            success_rate = 0.0
            if stats.tasks_created:
                success_rate = round(stats.completed_tasks / stats.tasks_created * 100, 2)
            return QueueSummary(
                total_tasks=stats.tasks_created,
                queued_tasks=queued,
                processing_tasks=stats.processing_tasks,
                completed_tasks=stats.completed_tasks,
                failed_tasks=stats.failed_tasks,
                success_rate=success_rate,
                active_workers=stats.active_workers,
                busy_workers=busy,
                idle_workers=stats.active_workers - busy,
                avg_processing_time=round(stats.avg_processing_time, 2),
                queue_health=QueueSummary.health_for(queued),
            )

    def list_tasks(self, limit: int = 100, offset: int = 0) -> List[Task]:
        with self._lock:
            return [task.model_copy(deep=True) for task in self.store.list_tasks(limit, offset)]

    def clear_all(self) -> None:
        """
        Drop every task, lane entry and result and reset the counters.
        Registered workers are kept.
        """
        with self._lock:
            self._cancel_retry_timers()
            self.lanes.clear()
            self.store.clear()
            self.stats = QueueStats()
            logger.info("Cleared all queues and task records")

    def close(self) -> None:
        with self._lock:
            self._cancel_retry_timers()

    # Workers

    def register_worker(self, worker_id: str, pid: Optional[int] = None) -> WorkerRecord:
        with self._lock:
            now = self._clock()
            if worker_id in self.workers:
                logger.warning("Worker %s registered again, replacing previous record", worker_id)
            record = WorkerRecord(id=worker_id, pid=pid, started_at=now, last_heartbeat=now)
            self.workers[worker_id] = record
            logger.info("Worker %s registered (pid %s)", worker_id, pid)
            self._emit(EventType.WORKER_REGISTERED, worker={"id": worker_id, "pid": pid})
            return record.model_copy()

    def heartbeat(
        self,
        worker_id: str,
        status: Union[str, WorkerStatus] = WorkerStatus.IDLE,
        current_task: Optional[str] = None,
    ) -> bool:
        with self._lock:
            worker = self.workers.get(worker_id)
            if worker is None:
                return False
            worker.status = WorkerStatus(status)
            worker.current_task = current_task
            worker.last_heartbeat = self._clock()
            return True

    def record_task_processed(self, worker_id: str) -> bool:
        with self._lock:
            worker = self.workers.get(worker_id)
            if worker is None:
                return False
            worker.tasks_processed += 1
            return True

    def unregister_worker(self, worker_id: str) -> bool:
        with self._lock:
            worker = self.workers.pop(worker_id, None)
            if worker is None:
                return False
            logger.info("Worker %s unregistered after %d tasks", worker_id, worker.tasks_processed)
            self._emit(EventType.WORKER_UNREGISTERED, worker={
                "id": worker_id,
                "tasks_processed": worker.tasks_processed,
            })
            return True

    def active_workers(self) -> List[WorkerRecord]:
        with self._lock:
            return [worker.model_copy() for worker in self.workers.values()]

    # Internals

    def _in_flight_task(self, task_id: str) -> Optional[Task]:
        task = self.store.get_task(task_id)
        if task is None or task.status != TaskStatus.PROCESSING or not self.lanes.is_in_flight(task_id):
            logger.debug("Task %s is not in flight", task_id)
            return None
        return task

    def _update_average_processing_time(self, processing_time: float) -> None:
        completed = self.stats.completed_tasks
        self.stats.avg_processing_time += (processing_time - self.stats.avg_processing_time) / completed

    def _cancel_retry_timers(self) -> None:
        for timer in self._retry_timers.values():
            timer.cancel()
        self._retry_timers.clear()

    def _emit(self, event_type: EventType, **data: Any) -> None:
        self.events.publish(QueueEvent(event=event_type, timestamp=self._clock(), **data))
