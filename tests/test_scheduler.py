"""Tests for the monitoring scheduler."""

from datetime import datetime, timedelta

import pytest

from copyguard.db.models import MonitoringTask, TaskStatus
from copyguard.errors import RecordNotFoundError
from copyguard.worker.messages import CrawlMessage
from copyguard.worker.scheduler import (
    MonitoringScheduler,
    compute_next_run,
    register_monitoring,
    setup_scheduler,
)

NOW = datetime(2026, 1, 1, 0, 0)


class TestComputeNextRun:
    @pytest.mark.parametrize(
        "spec,delta",
        [
            ("0 */6 * * *", timedelta(hours=6)),
            ("0 */12 * * *", timedelta(hours=12)),
            ("0 0 * * *", timedelta(hours=24)),
            ("@hourly", timedelta(hours=1)),
            ("@daily", timedelta(days=1)),
            ("@weekly", timedelta(weeks=1)),
        ],
    )
    def test_interval_patterns(self, spec, delta):
        assert compute_next_run(spec, NOW) == NOW + delta

    def test_crontab_expression(self):
        assert compute_next_run("30 2 * * *", NOW) == datetime(2026, 1, 1, 2, 30)

    def test_result_is_strictly_after_now(self):
        at_fire_time = datetime(2026, 1, 1, 2, 30)
        assert compute_next_run("30 2 * * *", at_fire_time) == datetime(2026, 1, 2, 2, 30)

    @pytest.mark.parametrize("spec", ["not a schedule", "", None, "99 99 * * *"])
    def test_unparseable_falls_back_to_default(self, spec):
        assert compute_next_run(spec, NOW) == NOW + timedelta(hours=6)


async def _task(session_factory, work, **overrides) -> MonitoringTask:
    values = dict(
        work_id=work.id,
        tenant_id=work.tenant_id,
        queries=["q"],
        status=TaskStatus.ACTIVE.value,
        next_run_at=NOW - timedelta(minutes=1),
    )
    values.update(overrides)
    async with session_factory() as db:
        task = MonitoringTask(**values)
        db.add(task)
        await db.commit()
    return task


async def _reload(session_factory, task_id: str) -> MonitoringTask:
    async with session_factory() as db:
        return await db.get(MonitoringTask, task_id)


class TestRunCycle:
    async def test_enqueues_every_query_in_order(self, session_factory, channel, work):
        task = await _task(session_factory, work, queries=["first", "second", "third"])
        scheduler = MonitoringScheduler(session_factory, channel)

        assert await scheduler.run_cycle(NOW) == 3

        assert [p.priority for p in channel.published] == [0, 1, 2]
        messages = channel.messages
        assert all(isinstance(m, CrawlMessage) for m in messages)
        assert [m.query for m in messages] == ["first", "second", "third"]
        assert [m.priority for m in messages] == [0, 1, 2]
        assert {m.job_id for m in messages} == {task.id}
        assert {m.tenant_id for m in messages} == {"tenant-1"}

        stored = await _reload(session_factory, task.id)
        assert stored.last_run_at == NOW
        assert stored.next_run_at == NOW + timedelta(hours=6)
        assert stored.run_count == 1

    async def test_advanced_task_is_not_due_again(self, session_factory, channel, work):
        await _task(session_factory, work)
        scheduler = MonitoringScheduler(session_factory, channel)
        assert await scheduler.run_cycle(NOW) == 1
        assert await scheduler.run_cycle(NOW + timedelta(minutes=5)) == 0

    async def test_skips_future_and_inactive_tasks(self, session_factory, channel, work):
        await _task(session_factory, work, next_run_at=NOW + timedelta(hours=1))
        await _task(session_factory, work, status=TaskStatus.PAUSED.value)
        await _task(session_factory, work, status=TaskStatus.FAILED.value)
        scheduler = MonitoringScheduler(session_factory, channel)

        assert await scheduler.run_cycle(NOW) == 0
        assert channel.published == []

    async def test_one_failing_task_does_not_block_the_batch(self, session_factory, channel, work):
        broken = await _task(session_factory, work, queries=["a"])
        healthy = await _task(session_factory, work, queries=["b"])
        channel.fail_for = {broken.id}
        scheduler = MonitoringScheduler(session_factory, channel)

        assert await scheduler.run_cycle(NOW) == 1
        assert [m.job_id for m in channel.messages] == [healthy.id]

        assert (await _reload(session_factory, healthy.id)).run_count == 1
        not_advanced = await _reload(session_factory, broken.id)
        assert not_advanced.run_count == 0
        assert not_advanced.next_run_at == NOW - timedelta(minutes=1)

    async def test_batch_size_limits_a_cycle(self, session_factory, channel, work):
        for minutes in (3, 2, 1):
            await _task(session_factory, work, next_run_at=NOW - timedelta(minutes=minutes))
        scheduler = MonitoringScheduler(session_factory, channel, batch_size=2)

        assert await scheduler.run_cycle(NOW) == 2
        assert await scheduler.run_cycle(NOW) == 1

    async def test_tick_swallows_cycle_errors(self, channel):
        def broken_factory():
            raise RuntimeError("database down")

        scheduler = MonitoringScheduler(broken_factory, channel)
        await scheduler.tick()
        assert channel.published == []


class TestRegisterMonitoring:
    async def test_creates_active_task_due_now(self, session_factory, work):
        async with session_factory() as db:
            task = await register_monitoring(db, work.id, ["  Título A pdf ", "", "Título A epub"])

        stored = await _reload(session_factory, task.id)
        assert stored.status == TaskStatus.ACTIVE.value
        assert stored.queries == ["Título A pdf", "Título A epub"]
        assert stored.tenant_id == "tenant-1"
        assert stored.schedule_spec == "0 */6 * * *"
        assert stored.run_count == 0
        assert stored.next_run_at <= datetime.utcnow()

    async def test_unknown_work(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(RecordNotFoundError):
                await register_monitoring(db, "missing", ["q"])

    async def test_requires_a_query(self, session_factory, work):
        async with session_factory() as db:
            with pytest.raises(ValueError):
                await register_monitoring(db, work.id, ["", "   "])


def test_setup_scheduler_registers_tick(channel):
    monitoring = MonitoringScheduler(session_factory=lambda: None, channel=channel)
    scheduler = setup_scheduler(monitoring)
    job = scheduler.get_job("monitoring_tick")
    assert job is not None
    assert job.func == monitoring.tick
