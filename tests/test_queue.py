"""Tests for the Redis task queue and the consumer loop."""

from typing import Optional
from unittest.mock import patch
from uuid import uuid4

import fakeredis
import pytest
import redis.asyncio as redis

from copyguard.config import settings
from copyguard.errors import RecordNotFoundError
from copyguard.worker.messages import CrawlMessage
from copyguard.worker.queue import Channel, Job, TaskQueue, backoff_delay
from copyguard.worker.runner import QueueWorker, build_worker


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


def _crawl(query: str = "q") -> CrawlMessage:
    return CrawlMessage(job_id="task-1", work_id="work-1", tenant_id="tenant-1", query=query)


class JobChannel:
    """Hands out prepared jobs and records ack/fail calls."""

    name = "test"

    def __init__(self, *jobs: Job):
        self.jobs = list(jobs)
        self.acked: list[str] = []
        self.failed: list[tuple[str, str, bool]] = []
        self.closed = False

    async def reserve(self, timeout: Optional[int] = None) -> Optional[Job]:
        return self.jobs.pop(0) if self.jobs else None

    async def ack(self, job: Job) -> None:
        self.acked.append(job.id)

    async def fail(self, job: Job, error: Exception, retry: bool = True) -> bool:
        self.failed.append((job.id, type(error).__name__, retry))
        return retry and job.deliveries < job.max_attempts

    async def close(self) -> None:
        self.closed = True


def _job(deliveries: int = 1, max_attempts: int = 3) -> Job:
    return Job(
        id="job-1",
        message=_crawl(),
        priority=0,
        deliveries=deliveries,
        max_attempts=max_attempts,
        backoff_seconds=5.0,
    )


class TestBackoff:
    def test_doubles_per_delivery(self):
        assert [backoff_delay(5.0, d) for d in (1, 2, 3, 4)] == [5.0, 10.0, 20.0, 40.0]

    def test_zero_base(self):
        assert backoff_delay(0.0, 3) == 0.0


class TestQueueWorker:
    async def test_success_acks(self):
        handled = []

        async def handler(message):
            handled.append(message)

        channel = JobChannel(_job())
        worker = QueueWorker(channel, handler)

        assert await worker.process_one() is True
        assert handled == [_crawl()]
        assert channel.acked == ["job-1"]
        assert channel.failed == []

    async def test_idle_returns_false(self):
        async def handler(message):
            raise AssertionError("no job expected")

        assert await QueueWorker(JobChannel(), handler).process_one() is False

    async def test_transient_failure_is_retried(self):
        exhausted = []

        async def handler(message):
            raise ConnectionError("boom")

        async def on_exhausted(message, exc):
            exhausted.append(exc)

        channel = JobChannel(_job(deliveries=1, max_attempts=3))
        worker = QueueWorker(channel, handler, on_exhausted)

        assert await worker.process_one() is True
        assert channel.failed == [("job-1", "ConnectionError", True)]
        assert channel.acked == []
        assert exhausted == []

    async def test_last_attempt_runs_exhaustion_hook(self):
        exhausted = []

        async def handler(message):
            raise ConnectionError("boom")

        async def on_exhausted(message, exc):
            exhausted.append((message, str(exc)))

        channel = JobChannel(_job(deliveries=3, max_attempts=3))
        await QueueWorker(channel, handler, on_exhausted).process_one()

        assert exhausted == [(_crawl(), "boom")]

    async def test_non_retryable_error_is_dead_lettered(self):
        exhausted = []

        async def handler(message):
            raise RecordNotFoundError("gone")

        async def on_exhausted(message, exc):
            exhausted.append(exc)

        channel = JobChannel(_job(deliveries=1, max_attempts=3))
        await QueueWorker(channel, handler, on_exhausted).process_one()

        assert channel.failed == [("job-1", "RecordNotFoundError", False)]
        assert len(exhausted) == 1

    async def test_failing_exhaustion_hook_does_not_escape(self):
        async def handler(message):
            raise RecordNotFoundError("gone")

        async def on_exhausted(message, exc):
            raise RuntimeError("database down")

        channel = JobChannel(_job())
        assert await QueueWorker(channel, handler, on_exhausted).process_one() is True

    async def test_close_runs_hook_then_closes_channel(self):
        calls = []

        async def handler(message):
            pass

        async def on_close():
            calls.append("hook")

        channel = JobChannel()
        await QueueWorker(channel, handler, on_close=on_close).close()
        assert calls == ["hook"]
        assert channel.closed is True

    def test_unknown_stage(self):
        with pytest.raises(ValueError):
            build_worker("nope")


@pytest.fixture
async def crawl_queue():
    if not await _redis_available():
        pytest.skip("Redis not available")
    queue = TaskQueue(f"test-{uuid4().hex[:8]}")
    yield Channel(queue, CrawlMessage, max_attempts=2, backoff_seconds=0.0)
    await queue.purge()
    await queue.close()


class TestRedisQueue:
    async def test_lower_priority_value_is_served_first(self, crawl_queue):
        await crawl_queue.publish(_crawl("late"), priority=2)
        await crawl_queue.publish(_crawl("early"), priority=0)
        await crawl_queue.publish(_crawl("middle"), priority=1)

        served = []
        for _ in range(3):
            job = await crawl_queue.reserve(timeout=1)
            served.append(job.message.query)
            await crawl_queue.ack(job)
        assert served == ["early", "middle", "late"]
        assert await crawl_queue.queue.depth() == {
            "ready": 0, "delayed": 0, "processing": 0, "dead": 0,
        }

    async def test_same_priority_is_fifo(self, crawl_queue):
        for query in ("a", "b", "c"):
            await crawl_queue.publish(_crawl(query))

        served = []
        for _ in range(3):
            job = await crawl_queue.reserve(timeout=1)
            served.append(job.message.query)
            await crawl_queue.ack(job)
        assert served == ["a", "b", "c"]

    async def test_failed_job_is_redelivered_then_dead_lettered(self, crawl_queue):
        await crawl_queue.publish(_crawl())

        first = await crawl_queue.reserve(timeout=1)
        assert first.deliveries == 1
        assert await crawl_queue.fail(first, ConnectionError("boom")) is True

        second = await crawl_queue.reserve(timeout=1)
        assert second.id == first.id
        assert second.deliveries == 2
        assert second.last_error == "ConnectionError: boom"
        assert await crawl_queue.fail(second, ConnectionError("boom")) is False

        depth = await crawl_queue.queue.depth()
        assert depth["dead"] == 1
        assert depth["ready"] == 0
        assert await crawl_queue.reserve(timeout=1) is None

    async def test_publish_overrides_attempt_ceiling(self, crawl_queue):
        await crawl_queue.publish(_crawl(), max_attempts=1)
        job = await crawl_queue.reserve(timeout=1)
        assert job.max_attempts == 1
        assert await crawl_queue.fail(job, ConnectionError("boom")) is False

    async def test_non_retryable_failure_skips_retry(self, crawl_queue):
        await crawl_queue.publish(_crawl())
        job = await crawl_queue.reserve(timeout=1)
        assert await crawl_queue.fail(job, RecordNotFoundError("gone"), retry=False) is False
        assert (await crawl_queue.queue.depth())["dead"] == 1

    async def test_wire_format_is_camel_case(self, crawl_queue):
        await crawl_queue.publish(_crawl())
        job = await crawl_queue.reserve(timeout=1)
        assert '"jobId":"task-1"' in job.envelope["payload"]
        await crawl_queue.ack(job)


@pytest.fixture
async def fake_queue():
    queue = TaskQueue("leases", client=fakeredis.FakeAsyncRedis(decode_responses=True))
    yield Channel(queue, CrawlMessage, max_attempts=3, backoff_seconds=0.0)
    await queue.close()


class TestLeases:
    async def test_reserved_job_is_leased_not_removed(self, fake_queue):
        await fake_queue.publish(_crawl())

        job = await fake_queue.reserve(timeout=0)

        assert job.deliveries == 1
        assert await fake_queue.queue.depth() == {
            "ready": 0, "delayed": 0, "processing": 1, "dead": 0,
        }

    async def test_unacked_job_is_redelivered_after_lease_expiry(self, fake_queue):
        await fake_queue.publish(_crawl())

        with patch.object(settings, "queue_visibility_timeout_seconds", 0):
            first = await fake_queue.reserve(timeout=0)
            # Consumer dies without ack or fail
            second = await fake_queue.reserve(timeout=0)

        assert second is not None
        assert second.id == first.id
        assert second.deliveries == 2
        assert second.message == _crawl()

    async def test_live_lease_is_not_handed_out_twice(self, fake_queue):
        await fake_queue.publish(_crawl())

        assert await fake_queue.reserve(timeout=0) is not None
        assert await fake_queue.reserve(timeout=0) is None

    async def test_ack_clears_delivery_count(self, fake_queue):
        await fake_queue.publish(_crawl())
        job = await fake_queue.reserve(timeout=0)

        await fake_queue.ack(job)

        client = await fake_queue.queue._get_redis()
        assert await client.hget(fake_queue.queue.deliveries_key, job.id) is None
        assert await fake_queue.queue.depth() == {
            "ready": 0, "delayed": 0, "processing": 0, "dead": 0,
        }

    async def test_orphaned_id_is_dropped(self, fake_queue):
        client = await fake_queue.queue._get_redis()
        await client.zadd(fake_queue.queue.ready_key, {"ghost": 1})

        assert await fake_queue.reserve(timeout=0) is None
        assert (await fake_queue.queue.depth())["ready"] == 0

    async def test_empty_queue_waits_out_the_timeout(self, fake_queue):
        with patch.object(settings, "queue_idle_poll_seconds", 0.01):
            assert await fake_queue.reserve(timeout=0.05) is None
