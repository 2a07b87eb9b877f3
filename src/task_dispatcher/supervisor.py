import asyncio
import logging
import multiprocessing
import os
import queue
import signal
import time
from datetime import datetime
from multiprocessing.process import BaseProcess
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from task_dispatcher.domain.task import utcnow
from task_dispatcher.domain.worker import WorkerMessage, WorkerMessageType
from task_dispatcher.events import log_event
from task_dispatcher.handlers import build_default_registry
from task_dispatcher.loadtest import run_load_test
from task_dispatcher.manager import SchedulerServer
from task_dispatcher.scheduler import Scheduler
from task_dispatcher.worker import run_worker_process

logger = logging.getLogger(__name__)


class WorkerProcessInfo(BaseModel):
    """
    Supervisor bookkeeping for one worker process slot.
    """
    index: int
    worker_id: str
    pid: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    tasks_completed: int = 0
    tasks_failed: int = 0


def worker_id_for(index: int) -> str:
    return f"worker-{index + 1}"


class Supervisor:
    """
    Keeps a pool of worker processes running against one served scheduler.

    Crashed workers are respawned into the same slot after ``respawn_delay``;
    there is no crash-loop limit. The supervisor only holds process metadata
    and learns about task outcomes from ``WorkerMessage`` values the workers
    put on a shared queue.
    """

    def __init__(
        self,
        settings,
        scheduler: Optional[Scheduler] = None,
        registry_factory: Callable = build_default_registry,
        process_factory: Optional[Callable[[int, str], BaseProcess]] = None,
        mp_context=None,
    ):
        self.settings = settings
        self.scheduler: Scheduler = scheduler or Scheduler.from_settings(settings)
        self.registry_factory = registry_factory
        self.expected_workers: int = settings.worker_count
        self.workers: Dict[int, WorkerProcessInfo] = {}
        self.total_completed: int = 0
        self.total_failed: int = 0
        self.shutting_down: bool = False
        self.address = settings.manager_address

        self._ctx = mp_context or multiprocessing.get_context()
        self._messages = self._ctx.Queue()
        self._process_factory = process_factory or self._create_process
        self._processes: Dict[int, BaseProcess] = {}
        self._respawns: List[asyncio.TimerHandle] = []
        self._server: Optional[SchedulerServer] = None
        self._shutdown_requested: Optional[asyncio.Event] = None
        self._started = time.monotonic()

    # Process management

    def _create_process(self, index: int, worker_id: str) -> BaseProcess:
        return self._ctx.Process(
            target=run_worker_process,
            name=worker_id,
            args=(worker_id, self.settings, self.address, self._messages, self.registry_factory),
        )

    def spawn_worker(self, index: int) -> Optional[WorkerProcessInfo]:
        if self.shutting_down:
            return None
        worker_id = worker_id_for(index)
        process = self._process_factory(index, worker_id)
        process.start()
        self._processes[index] = process
        info = WorkerProcessInfo(index=index, worker_id=worker_id, pid=process.pid or 0)
        self.workers[index] = info
        logger.info("Worker %d spawned (PID: %s)", index + 1, process.pid)
        return info

    def handle_exit(self, index: int, exitcode: Optional[int]) -> None:
        """
        Forget a dead worker and, unless shutting down, respawn its slot.
        """
        info = self.workers.pop(index, None)
        self._processes.pop(index, None)

        if exitcode is not None and exitcode < 0:
            logger.warning("Worker %d killed by signal: %s", index + 1, signal.Signals(-exitcode).name)
        elif exitcode:
            logger.warning("Worker %d exited with code: %s", index + 1, exitcode)
        else:
            logger.info("Worker %d exited", index + 1)

        if info is not None:
            # A crashed worker never unregisters itself.
            self.scheduler.unregister_worker(info.worker_id)

        if info is not None and not self.shutting_down:
            logger.info("Restarting worker %d...", index + 1)
            loop = asyncio.get_running_loop()
            self._prune_respawns(loop.time())
            self._respawns.append(loop.call_later(self.settings.respawn_delay, self.spawn_worker, index))

    def _prune_respawns(self, now: float) -> None:
        self._respawns = [h for h in self._respawns if not h.cancelled() and h.when() > now]

    def reap(self) -> List[int]:
        """
        Detect exited processes. Returns the slots that exited.
        """
        exited = []
        for index, process in list(self._processes.items()):
            if not process.is_alive():
                exited.append(index)
                self.handle_exit(index, process.exitcode)
        return exited

    def handle_message(self, message: WorkerMessage) -> None:
        info = next((w for w in self.workers.values() if w.worker_id == message.worker_id), None)
        if message.type == WorkerMessageType.TASK_COMPLETED:
            self.total_completed += 1
            if info:
                info.tasks_completed += 1
        elif message.type == WorkerMessageType.TASK_FAILED:
            self.total_failed += 1
            if info:
                info.tasks_failed += 1

    def drain_messages(self) -> int:
        count = 0
        while True:
            try:
                message = self._messages.get_nowait()
            except queue.Empty:
                return count
            self.handle_message(message)
            count += 1

    # Diagnostics

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    @property
    def active_workers(self) -> int:
        return len(self._processes)

    def log_stats(self) -> None:
        uptime = int(self.uptime)
        stats = self.scheduler.get_stats()
        logger.info(
            "Cluster stats: uptime %dm %ds, workers %d/%d, completed %d, failed %d",
            uptime // 60, uptime % 60, self.active_workers, self.expected_workers,
            self.total_completed, self.total_failed,
        )
        logger.info(
            "Queue stats: pending %d, processing %d, retrying %d, lanes %s, avg %.2fms",
            stats.pending_tasks, stats.processing_tasks, stats.retrying_tasks,
            {priority.value: length for priority, length in stats.queue_lengths.items()},
            stats.avg_processing_time,
        )

    # Lifecycle

    def request_shutdown(self) -> None:
        if self._shutdown_requested is not None and not self._shutdown_requested.is_set():
            logger.info("Graceful shutdown initiated...")
            self._shutdown_requested.set()

    async def run(self) -> int:
        """
        Serve the scheduler, run the worker pool until a termination signal
        arrives, then shut down. Returns the process exit code.
        """
        loop = asyncio.get_running_loop()
        self._shutdown_requested = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        self.scheduler.events.add_listener(log_event)
        self._server = SchedulerServer(self.scheduler, self.settings.manager_address, self.settings.authkey_bytes)
        self._server.start()
        self.address = self._server.address

        logger.info(
            "Supervisor %d starting cluster with %d workers (%d CPU cores available)",
            os.getpid(), self.expected_workers, os.cpu_count() or 1,
        )
        for index in range(self.expected_workers):
            self.spawn_worker(index)

        if self.settings.seed_tasks:
            run_load_test(self.scheduler, self.settings.seed_tasks)

        next_stats = time.monotonic() + self.settings.stats_interval
        while not self._shutdown_requested.is_set():
            self.drain_messages()
            self.reap()
            if time.monotonic() >= next_stats:
                self.log_stats()
                next_stats = time.monotonic() + self.settings.stats_interval
            try:
                await asyncio.wait_for(self._shutdown_requested.wait(), timeout=0.1)
            except asyncio.TimeoutError:
                pass

        return await self.shutdown()

    async def shutdown(self) -> int:
        """
        Terminate every worker and wait up to ``shutdown_timeout`` for them.
        Returns 0 on a clean stop, 1 if workers had to be killed.
        """
        self.shutting_down = True
        for handle in self._respawns:
            handle.cancel()
        self._respawns.clear()

        for index, process in list(self._processes.items()):
            logger.info("Stopping worker %d...", index + 1)
            process.terminate()

        deadline = time.monotonic() + self.settings.shutdown_timeout
        while self._processes and time.monotonic() < deadline:
            self.drain_messages()
            self.reap()
            if self._processes:
                await asyncio.sleep(0.1)
        self.drain_messages()

        exit_code = 0
        if self._processes:
            logger.error("Forcing shutdown after timeout, %d workers still running", len(self._processes))
            for process in self._processes.values():
                process.kill()
            self._processes.clear()
            self.workers.clear()
            exit_code = 1
        else:
            logger.info("All workers stopped. Exiting.")

        logger.info("Final Stats - Completed: %d, Failed: %d", self.total_completed, self.total_failed)
        self.scheduler.close()
        if self._server is not None:
            self._server.stop()
        return exit_code
