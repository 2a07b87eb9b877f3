import asyncio
from typing import Any, Dict

from pydantic import BaseModel, Field

from task_dispatcher.client import LocalSchedulerClient
from task_dispatcher.handlers import build_default_registry
from task_dispatcher.logging_setup import setup_logging
from task_dispatcher.loadtest import run_load_test
from task_dispatcher.scheduler import Scheduler
from task_dispatcher.worker import Worker


class GreetingPayload(BaseModel):
    name: str = Field(..., description="Who to greet.")


# Built-in handlers with simulated work sped up 10x
registry = build_default_registry(time_scale=0.1)


@registry.handler("greeting", schema=GreetingPayload)
async def greet(payload: Dict[str, Any]) -> str:
    print(f"Hello, {payload['name']}!")
    return f"greeted {payload['name']}"


scheduler = Scheduler(max_retries=2, retry_delay=0.2)
scheduler.events.add_listener(lambda event: print(f"[{event.event.value}] {event.task or event.worker}"))


async def main():
    setup_logging("WARNING")
    client = LocalSchedulerClient(scheduler)
    workers = [Worker(client, registry, worker_id=f"worker-{n}", poll_interval=0.05) for n in range(1, 4)]
    for worker in workers:
        await worker.start()

    scheduler.submit("greeting", {"name": "Ada"}, priority="high")
    run_load_test(scheduler, 20, batch_size=5)

    while True:
        stats = scheduler.get_stats()
        if stats.pending_tasks == stats.processing_tasks == stats.retrying_tasks == 0:
            break
        await asyncio.sleep(0.2)

    for worker in workers:
        await worker.stop()
    print(scheduler.get_summary().model_dump_json(indent=2))
    scheduler.close()


if __name__ == "__main__":
    asyncio.run(main())
