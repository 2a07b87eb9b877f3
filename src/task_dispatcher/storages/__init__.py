from .protocol import TaskStore
from .memory import InMemoryTaskStore

__all__ = ["TaskStore", "InMemoryTaskStore"]
