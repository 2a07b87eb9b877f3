import asyncio
from typing import Any, Optional, Protocol

from task_dispatcher.domain.task import Task
from task_dispatcher.domain.worker import WorkerRecord, WorkerStatus


class SchedulerClient(Protocol):
    """
    The operations a worker may call on the scheduler.

    Workers never touch queue internals; everything goes through this
    interface, whether the scheduler lives in the same process or behind a
    manager connection.
    """

    async def register_worker(self, worker_id: str, pid: Optional[int] = None) -> WorkerRecord:
        ...

    async def unregister_worker(self, worker_id: str) -> bool:
        ...

    async def heartbeat(self, worker_id: str, status: WorkerStatus, current_task: Optional[str] = None) -> bool:
        ...

    async def fetch_next(self, worker_id: str) -> Optional[Task]:
        ...

    async def complete(self, task_id: str, result: Any) -> bool:
        ...

    async def fail(self, task_id: str, error: str) -> bool:
        ...

    async def record_task_processed(self, worker_id: str) -> bool:
        ...


class LocalSchedulerClient(SchedulerClient):
    """
    Calls a scheduler living in the same process directly.
    Scheduler operations never block for long, so they run on the event loop.
    """

    def __init__(self, scheduler):
        self.scheduler = scheduler

    async def register_worker(self, worker_id: str, pid: Optional[int] = None) -> WorkerRecord:
        return self.scheduler.register_worker(worker_id, pid)

    async def unregister_worker(self, worker_id: str) -> bool:
        return self.scheduler.unregister_worker(worker_id)

    async def heartbeat(self, worker_id: str, status: WorkerStatus, current_task: Optional[str] = None) -> bool:
        return self.scheduler.heartbeat(worker_id, status, current_task)

    async def fetch_next(self, worker_id: str) -> Optional[Task]:
        return self.scheduler.fetch_next(worker_id)

    async def complete(self, task_id: str, result: Any) -> bool:
        return self.scheduler.complete(task_id, result)

    async def fail(self, task_id: str, error: str) -> bool:
        return self.scheduler.fail(task_id, error)

    async def record_task_processed(self, worker_id: str) -> bool:
        return self.scheduler.record_task_processed(worker_id)


class RemoteSchedulerClient(SchedulerClient):
    """
    Calls a scheduler proxy obtained from ``SchedulerManager``.

    Proxy calls are blocking socket round trips, so each one is moved off
    the event loop with ``asyncio.to_thread``.
    """

    def __init__(self, proxy):
        self.proxy = proxy

    async def _call(self, method: str, *args: Any) -> Any:
        return await asyncio.to_thread(getattr(self.proxy, method), *args)

    async def register_worker(self, worker_id: str, pid: Optional[int] = None) -> WorkerRecord:
        return await self._call("register_worker", worker_id, pid)

    async def unregister_worker(self, worker_id: str) -> bool:
        return await self._call("unregister_worker", worker_id)

    async def heartbeat(self, worker_id: str, status: WorkerStatus, current_task: Optional[str] = None) -> bool:
        return await self._call("heartbeat", worker_id, WorkerStatus(status).value, current_task)

    async def fetch_next(self, worker_id: str) -> Optional[Task]:
        return await self._call("fetch_next", worker_id)

    async def complete(self, task_id: str, result: Any) -> bool:
        return await self._call("complete", task_id, result)

    async def fail(self, task_id: str, error: str) -> bool:
        return await self._call("fail", task_id, error)

    async def record_task_processed(self, worker_id: str) -> bool:
        return await self._call("record_task_processed", worker_id)
