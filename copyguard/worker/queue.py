"""Redis-backed priority task queues with backoff and visibility leases.

Each queue keeps four structures:

- ``ready``: sorted set of job ids scored by (priority, enqueue sequence)
- ``delayed``: sorted set of job ids scored by the time they become ready
- ``processing``: sorted set of reserved job ids scored by lease expiry
- ``dead``: list of job ids that exhausted their attempts

Job envelopes live in a hash keyed by job id. Taking a job off ``ready`` and
leasing it in ``processing`` happen in one script, so a job is always in
exactly one structure. Leases that expire without an ack go back to
``ready``, which gives at-least-once delivery to any number of competing
consumers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar
from uuid import uuid4

import redis.asyncio as redis

from copyguard.config import settings
from copyguard.worker.messages import (
    CrawlMessage,
    ExtractionMessage,
    QueueMessage,
    TakedownMessage,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=QueueMessage)

KEY_PREFIX = "copyguard:queue"

# Priority dominates; a per-queue sequence number keeps FIFO order within a priority.
PRIORITY_SCALE = 10 ** 12

# Move every member of KEYS[1] scored <= ARGV[1] into KEYS[2], using the
# ready score stored in hash KEYS[3].
PROMOTE_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
    local score = redis.call('HGET', KEYS[3], id)
    if score then
        redis.call('ZADD', KEYS[2], score, id)
    end
    redis.call('ZREM', KEYS[1], id)
end
return #ids
"""

# Pop the lowest-scored id from KEYS[1], count the delivery in KEYS[3] and
# lease it in KEYS[4] until ARGV[1]. Returns {id, envelope, deliveries}, {id}
# for an id without envelope, or nil when KEYS[1] is empty.
RESERVE_SCRIPT = """
local popped = redis.call('ZPOPMIN', KEYS[1])
if #popped == 0 then
    return nil
end
local id = popped[1]
local raw = redis.call('HGET', KEYS[2], id)
if not raw then
    return {id}
end
local deliveries = redis.call('HINCRBY', KEYS[3], id, 1)
redis.call('ZADD', KEYS[4], ARGV[1], id)
return {id, raw, deliveries}
"""


@dataclass
class Job(Generic[M]):
    """A reserved queue entry."""

    id: str
    message: M
    priority: int
    deliveries: int
    max_attempts: int
    backoff_seconds: float
    last_error: Optional[str] = None
    envelope: dict = field(default_factory=dict, repr=False)


class TaskQueue:
    """Low-level queue of JSON envelopes."""

    def __init__(
        self,
        name: str,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.name = name
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = client
        self.ready_key = f"{KEY_PREFIX}:{name}:ready"
        self.delayed_key = f"{KEY_PREFIX}:{name}:delayed"
        self.processing_key = f"{KEY_PREFIX}:{name}:processing"
        self.dead_key = f"{KEY_PREFIX}:{name}:dead"
        self.jobs_key = f"{KEY_PREFIX}:{name}:jobs"
        self.scores_key = f"{KEY_PREFIX}:{name}:scores"
        self.deliveries_key = f"{KEY_PREFIX}:{name}:deliveries"
        self.seq_key = f"{KEY_PREFIX}:{name}:seq"

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def push(
        self,
        payload: str,
        priority: int = 0,
        max_attempts: int = 1,
        backoff_seconds: float = 0.0,
    ) -> str:
        """Add a payload to the ready set and return its job id."""
        client = await self._get_redis()
        job_id = uuid4().hex
        now_ms = int(time.time() * 1000)
        seq = await client.incr(self.seq_key)
        score = priority * PRIORITY_SCALE + seq
        envelope = {
            "id": job_id,
            "payload": payload,
            "priority": priority,
            "deliveries": 0,
            "max_attempts": max(1, max_attempts),
            "backoff_seconds": backoff_seconds,
            "enqueued_at": now_ms,
            "last_error": None,
        }
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(self.jobs_key, job_id, json.dumps(envelope))
            pipe.hset(self.scores_key, job_id, score)
            pipe.zadd(self.ready_key, {job_id: score})
            await pipe.execute()
        return job_id

    async def _promote(self, source_key: str) -> int:
        client = await self._get_redis()
        moved = await client.eval(
            PROMOTE_SCRIPT,
            3,
            source_key,
            self.ready_key,
            self.scores_key,
            str(time.time()),
        )
        return int(moved or 0)

    async def reserve(self, timeout: Optional[int] = None) -> Optional[dict]:
        """Take the highest-priority ready envelope and lease it.

        Args:
            timeout: Seconds to keep polling for work; 0 tries once

        Returns:
            Envelope dict, or None when nothing became ready in time
        """
        if timeout is None:
            timeout = settings.queue_poll_timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            envelope = await self._reserve_once()
            if envelope is not None:
                return envelope
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(settings.queue_idle_poll_seconds, remaining))

    async def _reserve_once(self) -> Optional[dict]:
        client = await self._get_redis()

        # Backoff timers that elapsed, then leases that expired unacked
        await self._promote(self.delayed_key)
        expired = await self._promote(self.processing_key)
        if expired:
            logger.warning("Requeued %d expired job(s) on %s", expired, self.name)

        lease_until = time.time() + settings.queue_visibility_timeout_seconds
        item = await client.eval(
            RESERVE_SCRIPT,
            4,
            self.ready_key,
            self.jobs_key,
            self.deliveries_key,
            self.processing_key,
            str(lease_until),
        )
        if not item:
            return None
        if len(item) == 1:
            logger.warning("Dropping orphaned job id %s on %s", item[0], self.name)
            return None

        _, raw, deliveries = item
        envelope = json.loads(raw)
        envelope["deliveries"] = int(deliveries)
        return envelope

    async def ack(self, job_id: str) -> None:
        """Remove a completed job."""
        client = await self._get_redis()
        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_key, job_id)
            pipe.hdel(self.jobs_key, job_id)
            pipe.hdel(self.scores_key, job_id)
            pipe.hdel(self.deliveries_key, job_id)
            await pipe.execute()

    async def fail(self, envelope: dict, error: str, retry: bool = True) -> bool:
        """Record a failed delivery.

        Returns:
            True if the job was scheduled for another attempt, False if it
            was moved to the dead-letter list.
        """
        client = await self._get_redis()
        job_id = envelope["id"]
        envelope["last_error"] = error[:500]
        can_retry = retry and envelope["deliveries"] < envelope["max_attempts"]

        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_key, job_id)
            pipe.hset(self.jobs_key, job_id, json.dumps(envelope))
            if can_retry:
                delay = backoff_delay(envelope["backoff_seconds"], envelope["deliveries"])
                pipe.zadd(self.delayed_key, {job_id: time.time() + delay})
            else:
                pipe.lpush(self.dead_key, job_id)
            await pipe.execute()
        return can_retry

    async def depth(self) -> dict[str, int]:
        """Return sizes of each queue structure."""
        client = await self._get_redis()
        return {
            "ready": int(await client.zcard(self.ready_key)),
            "delayed": int(await client.zcard(self.delayed_key)),
            "processing": int(await client.zcard(self.processing_key)),
            "dead": int(await client.llen(self.dead_key)),
        }

    async def purge(self) -> None:
        """Delete every key of this queue."""
        client = await self._get_redis()
        await client.delete(
            self.ready_key,
            self.delayed_key,
            self.processing_key,
            self.dead_key,
            self.jobs_key,
            self.scores_key,
            self.deliveries_key,
            self.seq_key,
        )


def backoff_delay(base_seconds: float, deliveries: int) -> float:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return base_seconds * (2 ** max(0, deliveries - 1))


class Channel(Generic[M]):
    """A queue bound to one message type and one retry policy."""

    def __init__(
        self,
        queue: TaskQueue,
        message_type: type[M],
        max_attempts: int = 1,
        backoff_seconds: float = 0.0,
    ):
        self.queue = queue
        self.message_type = message_type
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    @property
    def name(self) -> str:
        return self.queue.name

    async def publish(
        self,
        message: M,
        priority: int = 0,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Serialize and enqueue a message.

        Args:
            message: Message to publish
            priority: Lower value is served first
            max_attempts: Override the channel's attempt ceiling
        """
        return await self.queue.push(
            message.to_json(),
            priority=priority,
            max_attempts=max_attempts if max_attempts is not None else self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

    async def reserve(self, timeout: Optional[int] = None) -> Optional[Job[M]]:
        envelope = await self.queue.reserve(timeout=timeout)
        if envelope is None:
            return None
        return Job(
            id=envelope["id"],
            message=self.message_type.from_json(envelope["payload"]),
            priority=envelope["priority"],
            deliveries=envelope["deliveries"],
            max_attempts=envelope["max_attempts"],
            backoff_seconds=envelope["backoff_seconds"],
            last_error=envelope.get("last_error"),
            envelope=envelope,
        )

    async def ack(self, job: Job[M]) -> None:
        await self.queue.ack(job.id)

    async def fail(self, job: Job[M], error: Exception, retry: bool = True) -> bool:
        return await self.queue.fail(job.envelope, f"{type(error).__name__}: {error}", retry=retry)

    async def close(self) -> None:
        await self.queue.close()


def crawl_channel(redis_url: Optional[str] = None) -> Channel:
    return Channel(
        TaskQueue("crawl", redis_url),
        CrawlMessage,
        max_attempts=settings.crawl_max_attempts,
        backoff_seconds=settings.crawl_backoff_seconds,
    )


def extraction_channel(redis_url: Optional[str] = None) -> Channel:
    return Channel(
        TaskQueue("extract", redis_url),
        ExtractionMessage,
        max_attempts=settings.extract_max_attempts,
        backoff_seconds=settings.extract_backoff_seconds,
    )


def takedown_channel(redis_url: Optional[str] = None) -> Channel:
    return Channel(
        TaskQueue("takedown", redis_url),
        TakedownMessage,
        max_attempts=settings.takedown_max_attempts,
        backoff_seconds=settings.takedown_backoff_seconds,
    )
