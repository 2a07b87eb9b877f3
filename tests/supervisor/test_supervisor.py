import asyncio
import os
import signal
import sys
from typing import Callable, List, Optional

import pytest

from task_dispatcher.config import Settings
from task_dispatcher.domain.worker import WorkerMessage, WorkerMessageType
from task_dispatcher.supervisor import Supervisor, worker_id_for


class FakeProcess:
    next_pid = 1000

    def __init__(self, name: str, stubborn: bool = False):
        self.name = name
        self.stubborn = stubborn
        self.pid: Optional[int] = None
        self.exitcode: Optional[int] = None
        self.terminated = False
        self.killed = False

    def start(self) -> None:
        FakeProcess.next_pid += 1
        self.pid = FakeProcess.next_pid

    def is_alive(self) -> bool:
        return self.pid is not None and self.exitcode is None

    def terminate(self) -> None:
        self.terminated = True
        if not self.stubborn:
            self.exitcode = -signal.SIGTERM

    def kill(self) -> None:
        self.killed = True
        self.exitcode = -signal.SIGKILL


@pytest.fixture(scope="function")
def settings() -> Settings:
    return Settings(worker_count=2, respawn_delay=0.01, shutdown_timeout=0.3, stats_interval=60)


@pytest.fixture(scope="function")
def processes() -> List[FakeProcess]:
    return []


@pytest.fixture(scope="function")
def supervisor(settings: Settings, processes: List[FakeProcess]) -> Supervisor:
    def factory(index: int, worker_id: str) -> FakeProcess:
        process = FakeProcess(worker_id)
        processes.append(process)
        return process

    return Supervisor(settings, process_factory=factory)


def test_worker_ids() -> None:
    assert worker_id_for(0) == "worker-1"
    assert worker_id_for(3) == "worker-4"


def test_spawn_worker(supervisor: Supervisor, processes: List[FakeProcess]) -> None:
    info = supervisor.spawn_worker(0)

    assert info.worker_id == "worker-1"
    assert info.pid == processes[0].pid
    assert supervisor.active_workers == 1


@pytest.mark.asyncio
async def test_crashed_worker_is_respawned(supervisor: Supervisor, processes: List[FakeProcess]) -> None:
    supervisor.spawn_worker(0)
    supervisor.spawn_worker(1)
    supervisor.scheduler.register_worker("worker-1", processes[0].pid)

    processes[0].exitcode = 1
    assert supervisor.reap() == [0]
    assert supervisor.active_workers == 1
    assert [w.id for w in supervisor.scheduler.active_workers()] == []

    await asyncio.sleep(0.05)

    assert supervisor.active_workers == 2
    assert len(processes) == 3
    assert supervisor.workers[0].worker_id == "worker-1"
    assert supervisor.workers[0].pid == processes[2].pid


@pytest.mark.asyncio
async def test_no_respawn_while_shutting_down(supervisor: Supervisor, processes: List[FakeProcess]) -> None:
    supervisor.spawn_worker(0)
    supervisor.shutting_down = True
    processes[0].exitcode = -signal.SIGKILL

    supervisor.reap()
    await asyncio.sleep(0.05)

    assert supervisor.active_workers == 0
    assert len(processes) == 1
    assert supervisor.spawn_worker(0) is None


def test_handle_message_counts_outcomes(supervisor: Supervisor) -> None:
    supervisor.spawn_worker(0)
    supervisor.handle_message(WorkerMessage(
        type=WorkerMessageType.TASK_COMPLETED, worker_id="worker-1", task_id="tsk_1", duration_ms=12,
    ))
    supervisor.handle_message(WorkerMessage(
        type=WorkerMessageType.TASK_FAILED, worker_id="worker-1", task_id="tsk_2", error="boom",
    ))
    supervisor.handle_message(WorkerMessage(
        type=WorkerMessageType.TASK_COMPLETED, worker_id="worker-9", task_id="tsk_3",
    ))

    assert supervisor.total_completed == 2
    assert supervisor.total_failed == 1
    assert supervisor.workers[0].tasks_completed == 1
    assert supervisor.workers[0].tasks_failed == 1


@pytest.mark.asyncio
async def test_shutdown_clean(supervisor: Supervisor, processes: List[FakeProcess]) -> None:
    supervisor.spawn_worker(0)
    supervisor.spawn_worker(1)

    assert await supervisor.shutdown() == 0

    assert all(p.terminated for p in processes)
    assert not any(p.killed for p in processes)
    assert supervisor.active_workers == 0


@pytest.mark.asyncio
async def test_shutdown_kills_stubborn_workers(settings: Settings) -> None:
    processes: List[FakeProcess] = []

    def factory(index: int, worker_id: str) -> FakeProcess:
        process = FakeProcess(worker_id, stubborn=index == 1)
        processes.append(process)
        return process

    supervisor = Supervisor(settings, process_factory=factory)
    supervisor.spawn_worker(0)
    supervisor.spawn_worker(1)

    assert await supervisor.shutdown() == 1

    assert not processes[0].killed
    assert processes[1].killed
    assert supervisor.active_workers == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_respawn(supervisor: Supervisor, processes: List[FakeProcess], settings: Settings) -> None:
    settings.respawn_delay = 0.2
    supervisor.spawn_worker(0)
    processes[0].exitcode = 1
    supervisor.reap()

    assert await supervisor.shutdown() == 0
    await asyncio.sleep(0.3)

    assert len(processes) == 1


def test_log_stats(supervisor: Supervisor, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger="task_dispatcher")
    supervisor.spawn_worker(0)
    supervisor.scheduler.submit("email")

    supervisor.log_stats()

    assert "workers 1/2" in caplog.text
    assert "pending 1" in caplog.text


@pytest.mark.asyncio
async def test_fired_respawns_are_pruned(supervisor: Supervisor, processes: List[FakeProcess]) -> None:
    supervisor.spawn_worker(0)
    for _ in range(3):
        processes[-1].exitcode = 1
        supervisor.reap()
        assert len(supervisor._respawns) == 1
        await asyncio.sleep(0.05)

    assert len(processes) == 4
    assert supervisor.active_workers == 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 60.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.05)
    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX signals")
@pytest.mark.asyncio
async def test_run_with_worker_processes(monkeypatch: pytest.MonkeyPatch) -> None:
    # The manager server resets sys.stdout and sys.stderr when it stops.
    monkeypatch.setattr(sys, "stdout", sys.stdout)
    monkeypatch.setattr(sys, "stderr", sys.stderr)
    settings = Settings(
        worker_count=2,
        manager_port=0,
        handler_time_scale=0,
        poll_interval=0.05,
        heartbeat_interval=1.0,
        respawn_delay=0.1,
        stats_interval=60,
        shutdown_timeout=20,
        seed_tasks=0,
    )
    supervisor = Supervisor(settings)
    scheduler = supervisor.scheduler
    running = asyncio.create_task(supervisor.run())

    await wait_until(lambda: len(scheduler.active_workers()) == 2)
    for n in range(6):
        scheduler.submit("notification", {"user_id": f"user-{n}", "message": "hi"})
    await wait_until(lambda: supervisor.total_completed == 6)
    assert scheduler.get_stats().completed_tasks == 6

    crashed_pid = supervisor.workers[0].pid
    os.kill(crashed_pid, signal.SIGKILL)
    await wait_until(
        lambda: 0 in supervisor.workers
        and supervisor.workers[0].pid != crashed_pid
        and "worker-1" in {w.id for w in scheduler.active_workers()}
    )
    assert supervisor.active_workers == 2

    supervisor.request_shutdown()
    exit_code = await asyncio.wait_for(running, timeout=60)

    assert exit_code == 0
    assert supervisor.total_completed == 6
    assert supervisor.active_workers == 0
    assert scheduler.active_workers() == []
