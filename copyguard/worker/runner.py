"""Queue consumer loop and worker process entry point.

Run one stage per process::

    python -m copyguard.worker.runner crawl
    python -m copyguard.worker.runner extract
    python -m copyguard.worker.runner takedown
"""

import argparse
import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from copyguard import metrics
from copyguard.errors import NonRetryableError
from copyguard.worker.queue import Channel, Job

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]
ExhaustedHook = Callable[[Any, Exception], Awaitable[None]]
CloseHook = Callable[[], Awaitable[None]]


class QueueWorker:
    """Pull jobs from a channel and run a handler with ack/retry semantics.

    Handlers must be idempotent: a job whose lease expires is delivered
    again. A ``NonRetryableError`` goes straight to the dead-letter list;
    other exceptions follow the channel's backoff until the attempt ceiling,
    after which ``on_exhausted`` gets a chance to mark the owning record.
    """

    def __init__(
        self,
        channel: Channel,
        handler: Handler,
        on_exhausted: Optional[ExhaustedHook] = None,
        on_close: Optional[CloseHook] = None,
    ):
        self.channel = channel
        self.handler = handler
        self.on_exhausted = on_exhausted
        self.on_close = on_close
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def close(self) -> None:
        if self.on_close is not None:
            await self.on_close()
        await self.channel.close()

    async def process_one(self, timeout: Optional[int] = None) -> bool:
        """Reserve and handle a single job.

        Returns:
            True if a job was handled (successfully or not), False if idle
        """
        job: Optional[Job] = await self.channel.reserve(timeout=timeout)
        if job is None:
            return False

        try:
            await self.handler(job.message)
        except Exception as exc:
            retryable = not isinstance(exc, NonRetryableError)
            will_retry = await self.channel.fail(job, exc, retry=retryable)
            if will_retry:
                metrics.record_queue_job(self.channel.name, "retry")
                logger.warning(
                    "%s job %s failed (delivery %d/%d), will retry: %s",
                    self.channel.name, job.id, job.deliveries, job.max_attempts, exc,
                )
            else:
                metrics.record_queue_job(self.channel.name, "dead")
                logger.error(
                    "%s job %s dead-lettered after %d delivery(ies): %s",
                    self.channel.name, job.id, job.deliveries, exc,
                )
                if self.on_exhausted is not None:
                    try:
                        await self.on_exhausted(job.message, exc)
                    except Exception:
                        logger.exception("Exhaustion hook failed for %s job %s", self.channel.name, job.id)
            return True

        await self.channel.ack(job)
        metrics.record_queue_job(self.channel.name, "ack")
        return True

    async def run(self) -> None:
        """Consume until stop() is called."""
        logger.info("Worker started on queue %s", self.channel.name)
        while not self._stopping.is_set():
            try:
                await self.process_one()
            except (ConnectionError, TimeoutError, OSError) as exc:
                logger.warning("Queue %s unavailable: %s; backing off", self.channel.name, exc)
                await asyncio.sleep(5)
        logger.info("Worker on queue %s stopped", self.channel.name)


def build_worker(stage: str) -> QueueWorker:
    """Wire the handler and channels for one pipeline stage."""
    from copyguard.worker import queue

    if stage == "crawl":
        from copyguard.worker.crawl_worker import CrawlProcessor

        processor = CrawlProcessor(extraction_channel=queue.extraction_channel())
        return QueueWorker(
            queue.crawl_channel(), processor.process, processor.on_exhausted, processor.close
        )

    if stage == "extract":
        from copyguard.worker.extraction_worker import ExtractionProcessor

        processor = ExtractionProcessor()
        return QueueWorker(queue.extraction_channel(), processor.process, processor.on_exhausted)

    if stage == "takedown":
        from copyguard.worker.takedown_worker import TakedownProcessor

        processor = TakedownProcessor()
        return QueueWorker(queue.takedown_channel(), processor.process, processor.on_exhausted)

    raise ValueError(f"Unknown stage: {stage}")


async def _main(stage: str) -> None:
    worker = build_worker(stage)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            pass
    try:
        await worker.run()
    finally:
        await worker.close()


def main() -> None:
    from copyguard.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Run a CopyGuard pipeline worker")
    parser.add_argument("stage", choices=["crawl", "extract", "takedown"])
    args = parser.parse_args()

    setup_logging(service=args.stage)
    asyncio.run(_main(args.stage))


if __name__ == "__main__":
    main()
