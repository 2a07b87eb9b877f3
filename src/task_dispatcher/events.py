import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from task_dispatcher.domain.event import QueueEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[QueueEvent], None]


class Subscription:
    """
    Bounded buffer of events for one observer.

    When the buffer is full the oldest event is discarded to make room and
    ``dropped`` is incremented. Publishers never block.
    """

    def __init__(self, bus: "EventBus", maxsize: int):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._bus = bus
        self._buffer: Deque[QueueEvent] = deque(maxlen=maxsize)
        self._lock = threading.Lock()
        self.dropped: int = 0
        self.closed: bool = False

    @property
    def maxsize(self) -> int:
        return self._buffer.maxlen

    def put(self, event: QueueEvent) -> None:
        with self._lock:
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1
            self._buffer.append(event)

    def get_nowait(self) -> Optional[QueueEvent]:
        with self._lock:
            if not self._buffer:
                return None
            return self._buffer.popleft()

    def drain(self) -> List[QueueEvent]:
        with self._lock:
            events = list(self._buffer)
            self._buffer.clear()
            return events

    def close(self) -> None:
        self._bus.unsubscribe(self)
        self.closed = True

    def __len__(self) -> int:
        return len(self._buffer)


class EventBus:
    """
    Outbound channel for scheduler lifecycle events.

    Observers either subscribe for a buffered ``Subscription`` or add a
    listener callback that is invoked synchronously on publish. There is no
    acknowledgment: a slow subscriber loses its oldest events.
    """

    def __init__(self, default_maxsize: int = 1000):
        self.default_maxsize = default_maxsize
        self._subscriptions: List[Subscription] = []
        self._listeners: List[EventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, maxsize or self.default_maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: QueueEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
            listeners = list(self._listeners)
        for subscription in subscriptions:
            subscription.put(event)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", event.event.value)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions) + len(self._listeners)


def log_event(event: QueueEvent) -> None:
    """
    Listener that writes every event to the debug log.
    """
    fragment = event.task if event.task is not None else event.worker
    logger.debug("%s %s", event.event.value, fragment)
