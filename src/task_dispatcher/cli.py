"""Command line entry point.

``run`` starts the supervisor and its worker pool. The other commands
connect to a running supervisor through the manager channel and call the
scheduler's submission and query operations.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from task_dispatcher.config import Settings
from task_dispatcher.domain.task import TaskPriority, utcnow
from task_dispatcher.domain.worker import WorkerRecord
from task_dispatcher.exceptions import SchedulerUnavailableError, TaskDispatcherError
from task_dispatcher.loadtest import run_load_test, wait_for_drain
from task_dispatcher.logging_setup import setup_logging
from task_dispatcher.manager import connect_scheduler
from task_dispatcher.supervisor import Supervisor


def _print(value: Any) -> None:
    if isinstance(value, BaseModel):
        print(value.model_dump_json(indent=2))
    elif isinstance(value, list):
        print(json.dumps([v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value], indent=2))
    else:
        print(json.dumps(value, indent=2, default=str))


def worker_rows(workers: Iterable[WorkerRecord], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    rows = []
    for worker in workers:
        row = worker.model_dump(mode="json")
        row["uptime_seconds"] = round(worker.uptime_seconds(now), 1)
        rows.append(row)
    return rows


def _payload(raw: str) -> dict:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"payload is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise argparse.ArgumentTypeError("payload must be a JSON object")
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-dispatcher",
        description="Priority task queue with a supervised pool of worker processes",
    )
    parser.add_argument("--log-level", help="override DTQ_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="start the supervisor and its workers")
    run.add_argument("--workers", type=int, help="number of worker processes")
    run.add_argument("--seed", type=int, default=None, help="submit this many demo tasks on startup")

    submit = sub.add_parser("submit", help="submit one task")
    submit.add_argument("type", help="task type, e.g. email or computation")
    submit.add_argument("--payload", type=_payload, default={}, help="JSON object passed to the handler")
    submit.add_argument("--priority", choices=[p.value for p in TaskPriority], default=TaskPriority.NORMAL.value)
    submit.add_argument("--max-retries", type=int, default=None)

    status = sub.add_parser("status", help="show one task")
    status.add_argument("task_id")

    stats = sub.add_parser("stats", help="show queue statistics")
    stats.add_argument("--summary", action="store_true", help="show the dashboard summary instead")

    sub.add_parser("workers", help="list registered workers")
    sub.add_parser("clear", help="drop every task and reset counters")

    load = sub.add_parser("load-test", help="submit random tasks and optionally wait for them")
    load.add_argument("--count", type=int, default=100)
    load.add_argument("--batch-size", type=int, default=10)
    load.add_argument("--wait", action="store_true", help="wait until the queue drains")
    load.add_argument("--timeout", type=float, default=300.0)

    sub.add_parser("print-config", help="show the effective configuration")
    return parser


def _run_supervisor(settings: Settings) -> int:
    supervisor = Supervisor(settings)
    return asyncio.run(supervisor.run())


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.command == "run":
        if args.workers:
            overrides["worker_count"] = args.workers
        if args.seed is not None:
            overrides["seed_tasks"] = args.seed
    settings = Settings(**overrides)
    setup_logging(settings.log_level, settings.log_file)

    if args.command == "print-config":
        _print(settings.model_dump(exclude={"manager_authkey"}))
        return 0
    if args.command == "run":
        return _run_supervisor(settings)

    try:
        scheduler = connect_scheduler(settings.manager_address, settings.authkey_bytes)
        if args.command == "submit":
            task = scheduler.submit(args.type, args.payload, args.priority, args.max_retries)
            _print(task.summary())
        elif args.command == "status":
            task = scheduler.get_status(args.task_id)
            if task is None:
                print(f"Task {args.task_id} not found", file=sys.stderr)
                return 1
            _print(task)
        elif args.command == "stats":
            _print(scheduler.get_summary() if args.summary else scheduler.get_stats())
        elif args.command == "workers":
            _print(worker_rows(scheduler.active_workers()))
        elif args.command == "clear":
            scheduler.clear_all()
            print("All queues cleared")
        elif args.command == "load-test":
            result = run_load_test(scheduler, args.count, args.batch_size)
            print(
                f"Submitted {result.submitted}/{result.requested} tasks in "
                f"{result.elapsed_seconds:.2f}s ({result.throughput:.2f} tasks/second)"
            )
            if args.wait and not wait_for_drain(scheduler, timeout=args.timeout):
                print("Timed out waiting for the queue to drain", file=sys.stderr)
                return 1
    except SchedulerUnavailableError as e:
        print(f"Error: {e}. Is the supervisor running?", file=sys.stderr)
        return 2
    except TaskDispatcherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
