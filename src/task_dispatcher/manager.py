import logging
import threading
import time
from multiprocessing.managers import BaseManager, Server
from typing import Tuple

from task_dispatcher.exceptions import SchedulerUnavailableError

logger = logging.getLogger(__name__)

# Scheduler operations reachable through a manager proxy.
SCHEDULER_METHODS = (
    "submit",
    "submit_batch",
    "fetch_next",
    "complete",
    "fail",
    "get_status",
    "get_stats",
    "get_summary",
    "list_tasks",
    "clear_all",
    "register_worker",
    "heartbeat",
    "record_task_processed",
    "unregister_worker",
    "active_workers",
)


class SchedulerManager(BaseManager):
    """
    Client side of the manager channel, used by worker processes and the CLI.
    """


SchedulerManager.register("get_scheduler", exposed=SCHEDULER_METHODS)


class SchedulerServer:
    """
    Serves one scheduler instance to other processes from a background thread.
    """

    def __init__(self, scheduler, address: Tuple[str, int], authkey: bytes):
        class _ServerManager(BaseManager):
            pass

        _ServerManager.register("get_scheduler", callable=lambda: scheduler, exposed=SCHEDULER_METHODS)
        self.scheduler = scheduler
        self._server: Server = _ServerManager(address=address, authkey=authkey).get_server()
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="scheduler-manager", daemon=True
        )

    @property
    def address(self) -> Tuple[str, int]:
        return self._server.address

    def start(self) -> "SchedulerServer":
        self._thread.start()
        logger.info("Scheduler served on %s:%s", *self.address)
        return self

    def stop(self) -> None:
        # serve_forever creates stop_event on its own thread.
        deadline = time.monotonic() + 2
        while getattr(self._server, "stop_event", None) is None:
            if not self._thread.is_alive() or time.monotonic() >= deadline:
                break
            time.sleep(0.01)
        stop_event = getattr(self._server, "stop_event", None)
        if stop_event is not None:
            stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=2)
        logger.info("Scheduler manager stopped")


def connect_scheduler(address: Tuple[str, int], authkey: bytes):
    """
    Connect to a served scheduler and return a proxy exposing ``SCHEDULER_METHODS``.

    Raises:
        SchedulerUnavailableError: If nothing accepts connections at ``address``.
    """
    manager = SchedulerManager(address=tuple(address), authkey=authkey)
    try:
        manager.connect()
    except OSError as e:
        raise SchedulerUnavailableError(f"Cannot reach scheduler at {address[0]}:{address[1]}: {e}")
    return manager.get_scheduler()
