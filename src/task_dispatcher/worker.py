import asyncio
import logging
import os
import signal
import time
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Tuple

from task_dispatcher.client import RemoteSchedulerClient, SchedulerClient
from task_dispatcher.domain.task import Task
from task_dispatcher.domain.worker import WorkerMessage, WorkerMessageType, WorkerStatus
from task_dispatcher.exceptions import SchedulerUnavailableError
from task_dispatcher.handler_registry import HandlerRegistry
from task_dispatcher.handlers import build_default_registry
from task_dispatcher.logging_setup import setup_logging
from task_dispatcher.manager import connect_scheduler

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[WorkerMessage], None]


class LoopState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    POLLING = "polling"
    EXECUTING = "executing"
    SLEEPING = "sleeping"
    BACKING_OFF = "backing_off"


def _error_message(error: BaseException) -> str:
    # asyncio.TimeoutError and friends have an empty str()
    return str(error) or error.__class__.__name__


class Worker:
    """
    Polling actor that pulls tasks from the scheduler and runs their handlers.

    The worker suspends between polls on its stop event, so ``stop()`` wakes
    it immediately; a task already handed to a handler always runs to the
    end before the loop exits.
    """

    def __init__(
        self,
        client: SchedulerClient,
        registry: HandlerRegistry,
        worker_id: Optional[str] = None,
        poll_interval: float = 0.1,
        heartbeat_interval: float = 5.0,
        error_backoff: float = 1.0,
        on_outcome: Optional[OutcomeCallback] = None,
    ):
        self.id: str = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.client: SchedulerClient = client
        self.registry: HandlerRegistry = registry
        self.poll_interval: float = poll_interval
        self.heartbeat_interval: float = heartbeat_interval
        self.error_backoff: float = error_backoff
        self.on_outcome: Optional[OutcomeCallback] = on_outcome

        self.is_running: bool = False
        self.state: LoopState = LoopState.STOPPED
        self.current_task: Optional[Task] = None
        self.tasks_processed: int = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, client: SchedulerClient, registry: HandlerRegistry, settings, **kwargs) -> "Worker":
        return cls(
            client,
            registry,
            poll_interval=settings.poll_interval,
            heartbeat_interval=settings.heartbeat_interval,
            error_backoff=settings.fetch_error_backoff,
            **kwargs,
        )

    async def start(self):
        """
        Register with the scheduler and start the heartbeat and poll loops.
        """
        if self.is_running:
            return
        logger.info("Worker %s starting...", self.id)
        self.state = LoopState.STARTING
        await self.client.register_worker(self.id, os.getpid())

        self._stop_event = asyncio.Event()
        self.is_running = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Worker %s ready to process tasks", self.id)

    async def stop(self):
        """
        Stop polling, let the in-flight task finish, then unregister.
        """
        if not self.is_running:
            return
        logger.info("Worker %s stopping...", self.id)
        self.is_running = False
        self._stop_event.set()

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
        if self._poll_task:
            await self._poll_task

        try:
            await self.client.unregister_worker(self.id)
        except Exception as e:
            logger.error("Worker %s failed to unregister: %s", self.id, e)
        self.state = LoopState.STOPPED
        logger.info("Worker %s stopped. Processed %d tasks.", self.id, self.tasks_processed)

    async def _poll_loop(self):
        while self.is_running:
            self.state = LoopState.POLLING
            try:
                task = await self.client.fetch_next(self.id)
            except Exception as e:
                logger.error("Worker %s poll error: %s", self.id, e)
                await self._suspend(self.error_backoff, LoopState.BACKING_OFF)
                continue

            if task is None:
                await self._suspend(self.poll_interval, LoopState.SLEEPING)
            else:
                await self.process_task(task)

    async def _suspend(self, seconds: float, state: LoopState):
        """
        Sleep until the timeout elapses or a stop is requested.
        """
        self.state = state
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    @contextmanager
    def _executing(self, task: Task) -> Iterator[Task]:
        self.current_task = task
        self.state = LoopState.EXECUTING
        try:
            yield task
        finally:
            self.current_task = None

    async def process_task(self, task: Task):
        """
        Run the handler for ``task`` and report the outcome to the scheduler.
        """
        with self._executing(task):
            logger.info("Worker %s processing task %s (%s)", self.id, task.id, task.type)
            start_time = time.monotonic()
            try:
                result = await self.registry.execute(task.type, task.payload)
            except Exception as e:
                duration = (time.monotonic() - start_time) * 1000
                message = _error_message(e)
                logger.warning("Worker %s task %s failed after %.0fms: %s", self.id, task.id, duration, message)
                await self._report(self.client.fail, task.id, message)
                self._notify(WorkerMessage(
                    type=WorkerMessageType.TASK_FAILED,
                    worker_id=self.id,
                    task_id=task.id,
                    duration_ms=duration,
                    error=message,
                ))
                return

            duration = (time.monotonic() - start_time) * 1000
            await self._report(self.client.complete, task.id, result)
            self.tasks_processed += 1
            logger.info("Worker %s completed task %s in %.0fms", self.id, task.id, duration)
            await self._report(self.client.record_task_processed, self.id)
            self._notify(WorkerMessage(
                type=WorkerMessageType.TASK_COMPLETED,
                worker_id=self.id,
                task_id=task.id,
                duration_ms=duration,
            ))

    async def _report(self, call: Callable[..., Awaitable[Any]], *args: Any) -> None:
        try:
            await call(*args)
        except Exception as e:
            logger.error("Worker %s could not report to scheduler: %s", self.id, e)

    def _notify(self, message: WorkerMessage) -> None:
        if self.on_outcome is None:
            return
        try:
            self.on_outcome(message)
        except Exception as e:
            logger.error("Worker %s outcome callback failed: %s", self.id, e)

    async def _heartbeat_loop(self):
        while self.is_running:
            await asyncio.sleep(self.heartbeat_interval)
            await self.send_heartbeat()

    async def send_heartbeat(self):
        status = WorkerStatus.BUSY if self.current_task else WorkerStatus.IDLE
        current = self.current_task.id if self.current_task else None
        try:
            await self.client.heartbeat(self.id, status, current)
        except Exception as e:
            logger.error("Worker %s heartbeat error: %s", self.id, e)


async def _serve_worker(worker: Worker):
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    loop.add_signal_handler(signal.SIGTERM, stop_requested.set)

    await worker.start()
    await stop_requested.wait()
    await worker.stop()


def run_worker_process(
    worker_id: str,
    settings,
    address: Tuple[str, int],
    messages=None,
    registry_factory: Callable[[float], HandlerRegistry] = build_default_registry,
) -> None:
    """
    Entry point of a supervised worker process.

    Connects to the scheduler served by the supervisor and runs a worker
    until SIGTERM. SIGINT is ignored; the supervisor coordinates shutdown.
    """
    # A forked child inherits the parent loop's SIGTERM handler and wakeup fd.
    signal.set_wakeup_fd(-1)
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    setup_logging(settings.log_level, settings.log_file)

    try:
        proxy = connect_scheduler(address, settings.authkey_bytes)
        registry = registry_factory(settings.handler_time_scale)
    except SchedulerUnavailableError as e:
        logger.error("Worker %s startup failed: %s", worker_id, e)
        raise SystemExit(1)

    worker = Worker.from_settings(
        RemoteSchedulerClient(proxy),
        registry,
        settings,
        worker_id=worker_id,
        on_outcome=messages.put if messages is not None else None,
    )
    try:
        asyncio.run(_serve_worker(worker))
    except Exception:
        logger.exception("Worker %s crashed", worker_id)
        raise SystemExit(1)
