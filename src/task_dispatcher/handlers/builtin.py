"""
Simulated handlers for the built-in task types.

They sleep for a randomized processing time and fail at a fixed rate,
which is enough to exercise the retry machinery and the dashboards.
``time_scale`` shrinks or stretches the simulated work (0 disables it).
"""
import asyncio
import random
import time
from typing import Any, Callable, Dict, Optional

from task_dispatcher.exceptions import HandlerFailure

ResultBuilder = Callable[[Dict[str, Any]], Dict[str, Any]]


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class _MissingAsNone(dict):
    def __missing__(self, key: str) -> None:
        return None


class SimulatedHandler:
    """
    Async handler that simulates work of a given duration and failure rate.
    """

    def __init__(
        self,
        message: str,
        build_data: ResultBuilder,
        min_ms: float = 500,
        spread_ms: float = 2000,
        failure_rate: float = 0.0,
        failure_message: str = "Task failed",
        time_scale: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        self.message = message
        self.build_data = build_data
        self.min_ms = min_ms
        self.spread_ms = spread_ms
        self.failure_rate = failure_rate
        self.failure_message = failure_message
        self.time_scale = time_scale
        self.rng = rng or random.Random()

    def processing_time_ms(self, payload: Dict[str, Any]) -> float:
        return self.rng.random() * self.spread_ms + self.min_ms

    async def __call__(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        processing_time = self.processing_time_ms(payload)
        if self.time_scale > 0:
            await asyncio.sleep(processing_time * self.time_scale / 1000)

        if self.failure_rate and self.rng.random() < self.failure_rate:
            raise HandlerFailure(self.failure_message)

        return {
            "success": True,
            "message": self.message.format_map(_MissingAsNone(payload)),
            "data": self.build_data(payload),
            "processing_time": f"{processing_time:.0f}ms",
        }


class FileUploadHandler(SimulatedHandler):
    # Upload time grows with the file size.
    def processing_time_ms(self, payload: Dict[str, Any]) -> float:
        return (payload.get("size") or 1024) / 100 + self.rng.random() * 1000


def fibonacci(n: int) -> int:
    if n <= 1:
        return n
    a, b = 0, 1
    for _ in range(2, n + 1):
        a, b = b, a + b
    return b


def count_primes(limit: int) -> int:
    if limit < 2:
        return 0
    sieve = [True] * (limit + 1)
    sieve[0] = sieve[1] = False
    i = 2
    while i * i <= limit:
        if sieve[i]:
            for j in range(i * i, limit + 1, i):
                sieve[j] = False
        i += 1
    return sum(sieve)


def factorial(n: int) -> str:
    result = 1
    for i in range(2, n + 1):
        result *= i
    return str(result)


class ComputationHandler:
    """
    Runs a small CPU-bound computation named by ``operation``.
    """

    def __init__(self, time_scale: float = 1.0, rng: Optional[random.Random] = None):
        self.time_scale = time_scale
        self.rng = rng or random.Random()

    async def __call__(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        operation = payload.get("operation")
        data = payload.get("data") or {}
        processing_time = self.rng.random() * 3000 + 500

        if operation == "fibonacci":
            result: Any = fibonacci(data.get("n") or 30)
        elif operation == "prime":
            result = count_primes(data.get("limit") or 1000)
        elif operation == "factorial":
            result = factorial(data.get("n") or 20)
        else:
            if self.time_scale > 0:
                await asyncio.sleep(processing_time * self.time_scale / 1000)
            result = self.rng.random() * 1000

        return {
            "success": True,
            "message": "Computation completed",
            "data": {
                "operation": operation or "random",
                "input": data,
                "result": result,
            },
            "processing_time": f"{processing_time:.0f}ms",
        }


def email_handler(time_scale: float = 1.0) -> SimulatedHandler:
    return SimulatedHandler(
        "Email sent to {to}",
        lambda p: {"subject": p.get("subject"), "delivered_at": _timestamp_ms()},
        min_ms=500, spread_ms=2000, failure_rate=0.1,
        failure_message="SMTP connection failed", time_scale=time_scale,
    )


def image_processing_handler(time_scale: float = 1.0) -> SimulatedHandler:
    return SimulatedHandler(
        "Image processed successfully",
        lambda p: {
            "original_url": p.get("image_url"),
            "processed_url": f"processed_{_timestamp_ms()}.jpg",
            "operations": p.get("operations") or ["resize", "compress"],
        },
        min_ms=1000, spread_ms=5000, failure_rate=0.05,
        failure_message="Image processing failed: corrupt file", time_scale=time_scale,
    )


def data_analysis_handler(time_scale: float = 1.0) -> SimulatedHandler:
    rng = random.Random()
    return SimulatedHandler(
        "Analysis completed",
        lambda p: {
            "dataset_id": p.get("dataset_id"),
            "analysis_type": p.get("analysis_type") or "statistical",
            "results": {
                "mean": round(rng.random() * 100, 2),
                "median": round(rng.random() * 100, 2),
                "std_dev": round(rng.random() * 20, 2),
                "count": rng.randrange(10000),
            },
        },
        min_ms=2000, spread_ms=8000, time_scale=time_scale, rng=rng,
    )


def report_generation_handler(time_scale: float = 1.0) -> SimulatedHandler:
    rng = random.Random()
    return SimulatedHandler(
        "Report generated",
        lambda p: {
            "report_type": p.get("report_type") or "summary",
            "format": p.get("format") or "pdf",
            "download_url": f"/reports/report_{_timestamp_ms()}.{p.get('format') or 'pdf'}",
            "pages": rng.randrange(5, 55),
        },
        min_ms=2000, spread_ms=6000, failure_rate=0.08,
        failure_message="Report generation failed: insufficient data", time_scale=time_scale, rng=rng,
    )


def notification_handler(time_scale: float = 1.0) -> SimulatedHandler:
    return SimulatedHandler(
        "Notification sent",
        lambda p: {
            "user_id": p.get("user_id"),
            "channel": p.get("channel") or "push",
            "content": p.get("message"),
            "delivered": True,
        },
        min_ms=100, spread_ms=500, time_scale=time_scale,
    )


def file_upload_handler(time_scale: float = 1.0) -> FileUploadHandler:
    return FileUploadHandler(
        "File uploaded",
        lambda p: {
            "filename": p.get("filename"),
            "size": p.get("size") or 1024,
            "destination": p.get("destination") or "cloud-storage",
            "url": f"/files/{_timestamp_ms()}_{p.get('filename')}",
        },
        failure_rate=0.03, failure_message="Storage service unavailable", time_scale=time_scale,
    )


def database_backup_handler(time_scale: float = 1.0) -> SimulatedHandler:
    rng = random.Random()
    return SimulatedHandler(
        "Backup completed",
        lambda p: {
            "database": p.get("database") or "main",
            "tables_backed_up": p.get("tables") or ["all"],
            "backup_size": f"{rng.randrange(500)}MB",
            "backup_file": f"backup_{_timestamp_ms()}.sql.gz",
        },
        min_ms=5000, spread_ms=10000, time_scale=time_scale, rng=rng,
    )


def default_handler(time_scale: float = 1.0) -> SimulatedHandler:
    return SimulatedHandler(
        "Task completed",
        lambda p: dict(p),
        min_ms=500, spread_ms=2000, time_scale=time_scale,
    )
