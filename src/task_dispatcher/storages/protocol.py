from typing import Any, Iterator, List, Optional, Protocol

from task_dispatcher.domain.task import Task


class TaskStore(Protocol):
    """
    Owns task records and the results of completed tasks.

    Implementations are not synchronized; the scheduler calls them while
    holding its own lock.
    """

    def add_task(self, task: Task) -> str:
        """Store a new task and return its ID."""
        ...

    def get_task(self, task_id: str) -> Optional[Task]:
        """Retrieve a task by its ID."""
        ...

    def list_tasks(self, limit: int = 100, offset: int = 0) -> List[Task]:
        """List tasks in creation order with pagination."""
        ...

    def set_result(self, task_id: str, result: Any) -> None:
        """Store the result of a completed task."""
        ...

    def get_result(self, task_id: str) -> Optional[Any]:
        """Retrieve the result of a completed task."""
        ...

    def clear(self) -> None:
        """Remove every task and result."""
        ...

    def __len__(self) -> int:
        ...

    def __iter__(self) -> Iterator[Task]:
        ...
