class TaskDispatcherError(Exception):
    """Base class for errors raised by task_dispatcher."""


class InvalidTaskError(TaskDispatcherError, ValueError):
    """A submission was rejected before it reached a queue."""


class EmptyBatchError(InvalidTaskError):
    """A batch submission contained no entries."""


class HandlerFailure(TaskDispatcherError):
    """
    Raised by a handler to report an explicit failure.

    The worker treats it exactly like any other exception from a handler.
    """


class SchedulerUnavailableError(TaskDispatcherError):
    """A client could not reach the scheduler served by the supervisor."""
