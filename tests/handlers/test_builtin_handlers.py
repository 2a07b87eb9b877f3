import random

import pytest

from task_dispatcher.exceptions import HandlerFailure
from task_dispatcher.handlers.builtin import (
    ComputationHandler,
    SimulatedHandler,
    count_primes,
    email_handler,
    factorial,
    fibonacci,
    file_upload_handler,
    notification_handler,
)


def test_fibonacci() -> None:
    assert [fibonacci(n) for n in range(8)] == [0, 1, 1, 2, 3, 5, 8, 13]
    assert fibonacci(30) == 832040


def test_count_primes() -> None:
    assert count_primes(1) == 0
    assert count_primes(10) == 4
    assert count_primes(1000) == 168


def test_factorial() -> None:
    assert factorial(0) == "1"
    assert factorial(20) == "2432902008176640000"


@pytest.mark.asyncio
async def test_email_handler_success() -> None:
    handler = email_handler(time_scale=0)
    handler.failure_rate = 0

    result = await handler({"to": "a@example.com", "subject": "Hi"})

    assert result["success"] is True
    assert result["message"] == "Email sent to a@example.com"
    assert result["data"]["subject"] == "Hi"
    assert result["processing_time"].endswith("ms")


@pytest.mark.asyncio
async def test_message_tolerates_missing_fields() -> None:
    handler = email_handler(time_scale=0)
    handler.failure_rate = 0
    result = await handler({})
    assert result["message"] == "Email sent to None"


@pytest.mark.asyncio
async def test_simulated_handler_failure() -> None:
    handler = SimulatedHandler(
        "never", lambda p: {}, failure_rate=1.0, failure_message="SMTP connection failed", time_scale=0,
    )
    with pytest.raises(HandlerFailure, match="SMTP connection failed"):
        await handler({})


@pytest.mark.asyncio
async def test_simulated_handler_processing_time_range() -> None:
    handler = notification_handler(time_scale=0)
    handler.rng = random.Random(7)
    for _ in range(20):
        ms = handler.processing_time_ms({})
        assert 100 <= ms <= 600


def test_file_upload_time_grows_with_size() -> None:
    handler = file_upload_handler(time_scale=0)
    handler.rng = random.Random(0)
    small = handler.processing_time_ms({"size": 100})
    handler.rng = random.Random(0)
    large = handler.processing_time_ms({"size": 1_000_000})
    assert large - small == pytest.approx(9999.0)


@pytest.mark.asyncio
async def test_computation_handler_operations() -> None:
    handler = ComputationHandler(time_scale=0)

    fib = await handler({"operation": "fibonacci", "data": {"n": 10}})
    primes = await handler({"operation": "prime", "data": {"limit": 100}})
    fact = await handler({"operation": "factorial", "data": {"n": 5}})
    other = await handler({})

    assert fib["data"]["result"] == 55
    assert primes["data"]["result"] == 25
    assert fact["data"]["result"] == "120"
    assert other["data"]["operation"] == "random"
    assert 0 <= other["data"]["result"] < 1000
