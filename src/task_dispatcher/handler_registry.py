import inspect
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from task_dispatcher.domain.task import TaskType
from task_dispatcher.handlers.protocol import TaskHandler


class HandlerRegistry:
    """
    Maps task types to the async handlers that execute them.

    A handler may be registered with a pydantic schema; the payload is then
    validated before the handler runs. Unknown task types resolve to the
    default handler when one is set.
    """
    def __init__(self, default_handler: Optional[TaskHandler] = None):
        self._handlers: Dict[str, TaskHandler] = {}
        self._schemas: Dict[str, Type[BaseModel]] = {}
        self._default_handler: Optional[TaskHandler] = default_handler

    @property
    def supported_types(self) -> List[str]:
        return list(self._handlers)

    @property
    def default_handler(self) -> Optional[TaskHandler]:
        return self._default_handler

    def set_default(self, handler: TaskHandler) -> None:
        self._check_handler(handler)
        self._default_handler = handler

    def register(
        self,
        task_type: Union[str, TaskType],
        handler: TaskHandler,
        schema: Optional[Type[BaseModel]] = None,
    ) -> None:
        """
        Register a handler for a task type.

        Args:
            task_type (str): The task type the handler executes.
            handler (TaskHandler): Async callable taking the payload dict.
            schema (Type[BaseModel], optional): Payload schema to validate against.

        Raises:
            ValueError: If a handler is already registered for the type.
            TypeError: If the handler is not an async callable.
        """
        key = self._key(task_type)
        if key in self._handlers:
            raise ValueError(f"A handler for task type '{key}' is already registered")
        self._check_handler(handler)
        self._handlers[key] = handler
        if schema is not None:
            self._schemas[key] = schema

    def handler(
        self,
        task_type: Union[str, TaskType],
        schema: Optional[Type[BaseModel]] = None,
    ) -> Callable[[TaskHandler], TaskHandler]:
        """
        Decorator form of ``register``.
        """
        def decorator(func: TaskHandler) -> TaskHandler:
            self.register(task_type, func, schema)
            return func
        return decorator

    def get_handler(self, task_type: Union[str, TaskType]) -> TaskHandler:
        """
        Resolve the handler for a task type, falling back to the default handler.

        Raises:
            KeyError: If no handler is registered and no default is set.
        """
        key = self._key(task_type)
        handler = self._handlers.get(key, self._default_handler)
        if handler is None:
            raise KeyError(f"No handler registered for task type '{key}'")
        return handler

    def validate_payload(self, task_type: Union[str, TaskType], payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate the payload against the schema registered for the task type, if any.

        Raises:
            ValueError: If the payload is invalid for the registered schema.
        """
        key = self._key(task_type)
        schema = self._schemas.get(key)
        if schema is None:
            return payload
        try:
            return schema.model_validate(payload).model_dump()
        except ValidationError as e:
            raise ValueError(f"Invalid payload for task type '{key}': {str(e)}")

    async def execute(self, task_type: Union[str, TaskType], payload: Dict[str, Any]) -> Any:
        handler = self.get_handler(task_type)
        validated = self.validate_payload(task_type, payload)
        return await handler(validated)

    @staticmethod
    def _key(task_type: Union[str, TaskType]) -> str:
        return task_type.value if isinstance(task_type, TaskType) else str(task_type)

    @staticmethod
    def _check_handler(handler: TaskHandler) -> None:
        target = getattr(handler, "__call__", None)
        if not (inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(target)):
            raise TypeError(f"Handler {handler!r} must be an async callable")
