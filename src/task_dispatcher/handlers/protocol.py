from typing import Any, Dict, Protocol


class TaskHandler(Protocol):
    """
    Protocol for task handlers.

    A handler receives the task payload and returns the task result. Any
    exception it raises, including ``HandlerFailure`` and
    ``asyncio.TimeoutError``, is reported to the scheduler as a failed
    attempt.
    """

    async def __call__(self, payload: Dict[str, Any]) -> Any:
        ...
