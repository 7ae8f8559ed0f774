#!/usr/bin/env python3
"""
Inspect pipeline queue depths, dead letters and stuck monitoring tasks.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from copyguard.db.models import MonitoringTask, TakedownRequest, TakedownStatus, TaskStatus
from copyguard.db.session import AsyncSessionLocal
from copyguard.worker.queue import TaskQueue

QUEUE_NAMES = ("crawl", "extract", "takedown")
DEAD_LETTER_SAMPLE = 5


async def inspect() -> None:
    print("Queue Diagnosis")
    print("===============")
    for name in QUEUE_NAMES:
        queue = TaskQueue(name)
        try:
            depth = await queue.depth()
            print(
                f"{name}: ready={depth['ready']} delayed={depth['delayed']} "
                f"processing={depth['processing']} dead={depth['dead']}"
            )
            if depth["dead"]:
                client = await queue._get_redis()
                job_ids = await client.lrange(queue.dead_key, 0, DEAD_LETTER_SAMPLE - 1)
                for job_id in job_ids:
                    raw = await client.hget(queue.jobs_key, job_id)
                    envelope = json.loads(raw) if raw else {}
                    print(
                        f"  - dead job={job_id} deliveries={envelope.get('deliveries')} "
                        f"error={envelope.get('last_error')}"
                    )
        finally:
            await queue.close()
    print("")

    async with AsyncSessionLocal() as db:
        now = datetime.utcnow()
        result = await db.execute(
            select(MonitoringTask)
            .where(MonitoringTask.status == TaskStatus.ACTIVE.value)
            .where(MonitoringTask.next_run_at < now)
            .order_by(MonitoringTask.next_run_at)
        )
        overdue = result.scalars().all()
        print(f"Overdue ACTIVE monitoring tasks: {len(overdue)}")
        for task in overdue[:10]:
            lag_s = (now - task.next_run_at).total_seconds()
            print(f"  - id={task.id} next_run_at={task.next_run_at} lag_s={lag_s:.0f} runs={task.run_count}")

        result = await db.execute(
            select(MonitoringTask).where(MonitoringTask.status == TaskStatus.FAILED.value)
        )
        failed_tasks = result.scalars().all()
        print(f"FAILED monitoring tasks: {len(failed_tasks)}")
        for task in failed_tasks[:10]:
            print(f"  - id={task.id} last_error={task.last_error}")

        result = await db.execute(
            select(MonitoringTask)
            .where(MonitoringTask.status == TaskStatus.ACTIVE.value)
            .where(MonitoringTask.last_error.is_not(None))
        )
        erroring = result.scalars().all()
        print(f"ACTIVE monitoring tasks with a crawl error: {len(erroring)}")
        for task in erroring[:10]:
            print(f"  - id={task.id} last_error={task.last_error}")

        result = await db.execute(
            select(TakedownRequest).where(TakedownRequest.status == TakedownStatus.FAILED.value)
        )
        failed_takedowns = result.scalars().all()
        print(f"FAILED takedown requests: {len(failed_takedowns)}")
        for takedown in failed_takedowns[:10]:
            print(
                f"  - id={takedown.id} platform={takedown.platform} "
                f"attempts={takedown.attempts} response={takedown.response}"
            )

    print("")
    print("Recommendations")
    print("----------------")
    if overdue:
        print("- Overdue tasks: check that exactly one scheduler (API with SCHEDULER_ENABLED) is running.")
    if failed_takedowns:
        print("- Failed takedowns can be re-queued with POST /api/takedowns/{id}/retry.")
    if not overdue and not failed_takedowns:
        print("- Nothing to do.")


if __name__ == "__main__":
    asyncio.run(inspect())
