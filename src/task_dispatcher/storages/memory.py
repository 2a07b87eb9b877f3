from typing import Any, Dict, Iterator, List, Optional

from task_dispatcher.domain.task import Task
from task_dispatcher.storages.protocol import TaskStore


class InMemoryTaskStore(TaskStore):
    """
    Dictionary-backed task store.
    Nothing survives a restart; records are only removed by ``clear``.
    """

    def __init__(self):
        self._tasks: Dict[str, Task] = {}
        self._results: Dict[str, Any] = {}

    def add_task(self, task: Task) -> str:
        if task.id in self._tasks:
            raise ValueError(f"Task '{task.id}' already exists")
        self._tasks[task.id] = task
        return task.id

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def list_tasks(self, limit: int = 100, offset: int = 0) -> List[Task]:
        return list(self._tasks.values())[offset:offset + limit]

    def set_result(self, task_id: str, result: Any) -> None:
        self._results[task_id] = result

    def get_result(self, task_id: str) -> Optional[Any]:
        return self._results.get(task_id)

    def clear(self) -> None:
        self._tasks.clear()
        self._results.clear()

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))
