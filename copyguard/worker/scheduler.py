"""Monitoring scheduler: turns due monitoring tasks into crawl messages."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from copyguard import metrics
from copyguard.config import settings
from copyguard.db.models import MonitoringTask, TaskStatus, Work
from copyguard.errors import RecordNotFoundError
from copyguard.worker.messages import CrawlMessage
from copyguard.worker.queue import Channel

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "0 */6 * * *"

# Specs answered without a cron evaluator
INTERVAL_PATTERNS: dict[str, timedelta] = {
    "0 */6 * * *": timedelta(hours=6),
    "0 */12 * * *": timedelta(hours=12),
    "0 0 * * *": timedelta(hours=24),
    "@hourly": timedelta(hours=1),
    "@daily": timedelta(days=1),
    "@weekly": timedelta(weeks=1),
}


def compute_next_run(schedule_spec: Optional[str], now: Optional[datetime] = None) -> datetime:
    """
    Next run time for a schedule spec.

    Known interval patterns are added to ``now``. Any other 5-field crontab
    is evaluated with APScheduler's CronTrigger in UTC. Specs that do not
    parse fall back to ``default_schedule_interval_hours``.

    Args:
        schedule_spec: Interval pattern or crontab expression
        now: Naive UTC reference time (defaults to utcnow)

    Returns:
        Naive UTC datetime strictly after ``now``
    """
    now = now or datetime.utcnow()
    spec = (schedule_spec or "").strip()
    default = now + timedelta(hours=settings.default_schedule_interval_hours)

    interval = INTERVAL_PATTERNS.get(spec)
    if interval is not None:
        return now + interval

    try:
        trigger = CronTrigger.from_crontab(spec, timezone=timezone.utc)
    except ValueError:
        logger.warning(f"Unrecognized schedule '{spec}', using default interval")
        return default

    fire_time = trigger.get_next_fire_time(
        None, now.replace(tzinfo=timezone.utc) + timedelta(seconds=1)
    )
    if fire_time is None:
        return default
    return fire_time.astimezone(timezone.utc).replace(tzinfo=None)


async def register_monitoring(
    db: AsyncSession,
    work_id: str,
    queries: list[str],
    schedule_spec: str = DEFAULT_SCHEDULE,
) -> MonitoringTask:
    """Create an ACTIVE monitoring task that runs at the next scheduler tick.

    Raises:
        RecordNotFoundError: If the work does not exist
        ValueError: If no non-empty query is given
    """
    work = await db.get(Work, work_id)
    if work is None:
        raise RecordNotFoundError(f"Work not found: {work_id}")

    cleaned = [q.strip() for q in queries if q and q.strip()]
    if not cleaned:
        raise ValueError("At least one query is required")

    task = MonitoringTask(
        work_id=work.id,
        tenant_id=work.tenant_id,
        queries=cleaned,
        schedule_spec=schedule_spec or DEFAULT_SCHEDULE,
        status=TaskStatus.ACTIVE.value,
        next_run_at=datetime.utcnow(),
        run_count=0,
    )
    db.add(task)
    await db.commit()
    logger.info(f"Registered monitoring task {task.id} for work {work_id} ({len(cleaned)} queries)")
    return task


class MonitoringScheduler:
    """
    Poll for due monitoring tasks and enqueue one crawl message per query.

    Only one scheduler should run per deployment; two would enqueue every
    due task twice.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        channel: Optional[Channel] = None,
        batch_size: Optional[int] = None,
    ):
        if session_factory is None:
            from copyguard.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        if channel is None:
            from copyguard.worker.queue import crawl_channel

            channel = crawl_channel()
        self.session_factory = session_factory
        self.channel = channel
        self.batch_size = batch_size or settings.scheduler_batch_size

    async def _dispatch(self, task, now: datetime) -> int:
        """Enqueue a task's queries, then advance its schedule in one UPDATE."""
        for priority, query in enumerate(task.queries or []):
            await self.channel.publish(
                CrawlMessage(
                    job_id=task.id,
                    work_id=task.work_id,
                    tenant_id=task.tenant_id,
                    query=query,
                    priority=priority,
                ),
                priority=priority,
            )

        async with self.session_factory() as db:
            await db.execute(
                update(MonitoringTask)
                .where(MonitoringTask.id == task.id)
                .values(
                    last_run_at=now,
                    next_run_at=compute_next_run(task.schedule_spec, now),
                    run_count=MonitoringTask.run_count + 1,
                )
            )
            await db.commit()
        return len(task.queries or [])

    async def run_cycle(self, now: Optional[datetime] = None) -> int:
        """
        Run one scheduling pass.

        A failure reading the due set propagates; a failure on one task is
        logged and the rest of the batch continues.

        Returns:
            Number of crawl messages enqueued
        """
        now = now or datetime.utcnow()

        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    MonitoringTask.id,
                    MonitoringTask.work_id,
                    MonitoringTask.tenant_id,
                    MonitoringTask.queries,
                    MonitoringTask.schedule_spec,
                )
                .where(
                    MonitoringTask.status == TaskStatus.ACTIVE.value,
                    MonitoringTask.next_run_at <= now,
                )
                .order_by(MonitoringTask.next_run_at)
                .limit(self.batch_size)
            )
            due_tasks = result.all()

        enqueued = 0
        scheduled = 0
        for task in due_tasks:
            logger.debug(f"Scheduling task: {task.id}")
            try:
                enqueued += await self._dispatch(task, now)
                scheduled += 1
            except Exception as e:
                logger.error(f"Failed to schedule task {task.id}: {e}", exc_info=True)

        if due_tasks:
            logger.info(
                f"Scheduled {scheduled}/{len(due_tasks)} task(s), {enqueued} crawl message(s)"
            )
        metrics.record_scheduler_run(success=True, enqueued=enqueued)
        return enqueued

    async def tick(self) -> None:
        """Scheduler job entry point; a failed cycle is retried at the next tick."""
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)
            metrics.record_scheduler_run(success=False)


def setup_scheduler(monitoring: Optional[MonitoringScheduler] = None) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Returns:
        Configured scheduler instance
    """
    monitoring = monitoring or MonitoringScheduler()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        monitoring.tick,
        IntervalTrigger(seconds=settings.scheduler_poll_interval_seconds),
        id="monitoring_tick",
        name="Enqueue crawls for due monitoring tasks",
        next_run_time=datetime.now(),  # also run once at startup
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        replace_existing=True,
    )

    logger.info("Scheduler configured with monitoring tick")
    return scheduler
