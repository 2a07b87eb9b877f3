import pytest

from task_dispatcher.domain.task import TaskPriority
from task_dispatcher.queues import PriorityLanes


@pytest.fixture(scope="function")
def lanes() -> PriorityLanes:
    return PriorityLanes()


def test_pop_next_drains_lanes_in_precedence(lanes: PriorityLanes) -> None:
    lanes.push("l1", TaskPriority.LOW)
    lanes.push("n1", TaskPriority.NORMAL)
    lanes.push("h1", TaskPriority.HIGH)
    lanes.push("n2", TaskPriority.NORMAL)

    popped = [lanes.pop_next() for _ in range(4)]

    assert popped == [
        ("h1", TaskPriority.HIGH),
        ("n1", TaskPriority.NORMAL),
        ("n2", TaskPriority.NORMAL),
        ("l1", TaskPriority.LOW),
    ]
    assert lanes.pop_next() is None
    assert lanes.in_flight == ["h1", "n1", "n2", "l1"]


def test_push_rejects_in_flight_id(lanes: PriorityLanes) -> None:
    lanes.push("t1", TaskPriority.HIGH)
    lanes.pop_next()

    with pytest.raises(ValueError, match="in flight"):
        lanes.push("t1", TaskPriority.HIGH)

    assert lanes.release("t1") is True
    lanes.push("t1", TaskPriority.LOW)
    assert lanes.lane(TaskPriority.LOW) == ["t1"]


def test_release_unknown_id(lanes: PriorityLanes) -> None:
    assert lanes.release("missing") is False


def test_lengths_and_clear(lanes: PriorityLanes) -> None:
    lanes.push("a", TaskPriority.HIGH)
    lanes.push("b", TaskPriority.LOW)
    lanes.push("c", TaskPriority.LOW)
    lanes.pop_next()

    assert lanes.lengths() == {TaskPriority.HIGH: 0, TaskPriority.NORMAL: 0, TaskPriority.LOW: 2}
    assert len(lanes) == 2
    assert lanes.in_flight_count == 1

    lanes.clear()

    assert len(lanes) == 0
    assert lanes.in_flight_count == 0
