"""
Synthetic workload generation.

Used by the ``load-test`` CLI command and to seed demo tasks when the
supervisor starts. Works with a local ``Scheduler`` or a manager proxy,
since both expose ``submit_batch`` and ``get_stats``.
"""
import logging
import random
import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from task_dispatcher.domain.task import TaskPriority, TaskType

logger = logging.getLogger(__name__)

LOAD_TEST_TYPES = (
    TaskType.EMAIL,
    TaskType.IMAGE_PROCESSING,
    TaskType.DATA_ANALYSIS,
    TaskType.REPORT_GENERATION,
    TaskType.NOTIFICATION,
    TaskType.COMPUTATION,
)


class LoadTestResult(BaseModel):
    requested: int
    submitted: int
    elapsed_seconds: float

    @property
    def throughput(self) -> float:
        if self.elapsed_seconds <= 0:
            return float(self.submitted)
        return self.submitted / self.elapsed_seconds


def random_payload(task_type: TaskType, rng: random.Random) -> Dict[str, Any]:
    stamp = int(time.time() * 1000)
    if task_type == TaskType.EMAIL:
        return {"to": f"user{rng.randrange(10**6)}@example.com", "subject": "Load Test", "body": "Test email"}
    if task_type == TaskType.IMAGE_PROCESSING:
        return {"image_url": f"https://example.com/img{stamp}.jpg", "operations": ["resize"]}
    if task_type == TaskType.DATA_ANALYSIS:
        return {"dataset_id": f"ds-{stamp}", "analysis_type": "statistical"}
    if task_type == TaskType.REPORT_GENERATION:
        return {"report_type": "summary", "format": "pdf"}
    if task_type == TaskType.NOTIFICATION:
        return {"user_id": f"user-{stamp}", "message": "Load test notification", "channel": "push"}
    if task_type == TaskType.COMPUTATION:
        return {"operation": "fibonacci", "data": {"n": 25}}
    return {"test": True}


def generate_tasks(
    count: int,
    task_types: Sequence[TaskType] = LOAD_TEST_TYPES,
    priorities: Sequence[TaskPriority] = tuple(TaskPriority),
    rng: Optional[random.Random] = None,
) -> List[Dict[str, Any]]:
    rng = rng or random.Random()
    entries = []
    for _ in range(count):
        task_type = rng.choice(task_types)
        entries.append({
            "type": task_type.value,
            "priority": rng.choice(priorities).value,
            "payload": random_payload(task_type, rng),
        })
    return entries


def run_load_test(scheduler, total: int, batch_size: int = 10, rng: Optional[random.Random] = None) -> LoadTestResult:
    """
    Submit ``total`` random tasks in batches of ``batch_size``.
    """
    if total < 1:
        raise ValueError("total must be at least 1")
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    entries = generate_tasks(total, rng=rng)
    started = time.monotonic()
    submitted = 0
    for offset in range(0, total, batch_size):
        submitted += len(scheduler.submit_batch(entries[offset:offset + batch_size]))
    elapsed = time.monotonic() - started
    logger.info("Load test submitted %d/%d tasks in %.2fs", submitted, total, elapsed)
    return LoadTestResult(requested=total, submitted=submitted, elapsed_seconds=elapsed)


def wait_for_drain(scheduler, timeout: float = 300.0, interval: float = 1.0) -> bool:
    """
    Poll stats until nothing is pending, processing or waiting for a retry.
    Returns False if ``timeout`` elapses first.
    """
    deadline = time.monotonic() + timeout
    last_done = -1
    while time.monotonic() < deadline:
        stats = scheduler.get_stats()
        done = stats.completed_tasks + stats.failed_tasks
        if done != last_done:
            logger.info(
                "Completed: %d, Failed: %d, Pending: %d, Processing: %d",
                stats.completed_tasks, stats.failed_tasks, stats.pending_tasks, stats.processing_tasks,
            )
            last_done = done
        if stats.pending_tasks == 0 and stats.processing_tasks == 0 and stats.retrying_tasks == 0:
            return True
        time.sleep(interval)
    return False
