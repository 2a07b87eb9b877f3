from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from task_dispatcher.domain.task import PRIORITY_ORDER, TaskPriority


class PriorityLanes:
    """
    Three FIFO lanes of task ids plus the in-flight set.

    A task id lives in exactly one lane while pending and in the in-flight
    set while processing. ``pop_next`` drains lanes in strict precedence
    high > normal > low.
    """

    def __init__(self):
        self._lanes: Dict[TaskPriority, Deque[str]] = {priority: deque() for priority in PRIORITY_ORDER}
        # dict keeps insertion order, used as an ordered set
        self._in_flight: Dict[str, None] = {}

    def push(self, task_id: str, priority: TaskPriority) -> None:
        if task_id in self._in_flight:
            raise ValueError(f"Task '{task_id}' is in flight and cannot be queued")
        self._lanes[priority].append(task_id)

    def pop_next(self) -> Optional[Tuple[str, TaskPriority]]:
        """
        Move the oldest id of the highest non-empty lane into the in-flight set.
        """
        for priority in PRIORITY_ORDER:
            lane = self._lanes[priority]
            if lane:
                task_id = lane.popleft()
                self._in_flight[task_id] = None
                return task_id, priority
        return None

    def release(self, task_id: str) -> bool:
        """
        Drop an id from the in-flight set. Returns False if it was not there.
        """
        if task_id not in self._in_flight:
            return False
        del self._in_flight[task_id]
        return True

    def is_in_flight(self, task_id: str) -> bool:
        return task_id in self._in_flight

    def lengths(self) -> Dict[TaskPriority, int]:
        return {priority: len(lane) for priority, lane in self._lanes.items()}

    def lane(self, priority: TaskPriority) -> List[str]:
        return list(self._lanes[priority])

    @property
    def in_flight(self) -> List[str]:
        return list(self._in_flight)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def clear(self) -> None:
        for lane in self._lanes.values():
            lane.clear()
        self._in_flight.clear()

    def __len__(self) -> int:
        return sum(len(lane) for lane in self._lanes.values())
