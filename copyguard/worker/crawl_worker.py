"""Crawl queue consumer: resolve a query, fetch each URL, store and hand off."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from copyguard import metrics
from copyguard.db.models import CrawlResult, MonitoringTask
from copyguard.errors import PermanentURLError, TransientFetchError
from copyguard.ingest.fetcher import Fetcher, check_crawl_status
from copyguard.ingest.search import QueryResolver
from copyguard.ingest.storage import ContentStore
from copyguard.worker.messages import CrawlMessage, ExtractionMessage
from copyguard.worker.queue import Channel

logger = logging.getLogger(__name__)


class CrawlProcessor:
    """Process one CrawlMessage.

    URLs are handled sequentially and independently: a failing URL is
    logged and the rest of the task continues. The message is only retried
    when every URL failed with a transient error.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        fetcher: Optional[Fetcher] = None,
        store: Optional[ContentStore] = None,
        resolver: Optional[QueryResolver] = None,
        extraction_channel: Optional[Channel] = None,
    ):
        if session_factory is None:
            from copyguard.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        if extraction_channel is None:
            from copyguard.worker.queue import extraction_channel as make_channel

            extraction_channel = make_channel()
        self.session_factory = session_factory
        self.fetcher = fetcher or Fetcher()
        self.store = store or ContentStore()
        self.resolver = resolver or QueryResolver()
        self.extraction_channel = extraction_channel

    async def close(self) -> None:
        await self.fetcher.close()
        await self.resolver.close()
        await self.extraction_channel.close()

    async def process(self, message: CrawlMessage) -> None:
        logger.info(f"Processing crawl for task {message.job_id}, query: {message.query}")

        async with self.session_factory() as db:
            task = await db.get(MonitoringTask, message.job_id)
        if task is None:
            logger.warning(f"Monitoring task not found: {message.job_id}")
            return

        urls = await self.resolver.resolve(message.query)

        stored = 0
        transient_failures = 0
        for url in urls:
            try:
                if await self.process_url(url, message) is not None:
                    stored += 1
            except TransientFetchError as e:
                transient_failures += 1
                logger.error(f"Failed to process URL {url}: {e}")
            except PermanentURLError as e:
                logger.warning(f"Skipping URL {url}: {e}")
            except Exception as e:
                logger.error(f"Failed to process URL {url}: {e}", exc_info=True)

        if urls and transient_failures == len(urls):
            raise TransientFetchError(
                f"All {len(urls)} URL(s) failed transiently for query {message.query!r}"
            )

        logger.info(
            f"Completed crawl for task {message.job_id}: "
            f"{stored}/{len(urls)} URL(s) stored"
        )

    async def process_url(self, url: str, message: CrawlMessage) -> Optional[str]:
        """Fetch, store and enqueue one URL.

        Returns:
            The new CrawlResult id, or None when robots.txt denies the origin
        """
        if not await self.fetcher.check_robots_txt(url):
            logger.debug(f"Robots.txt disallows crawling: {url}")
            metrics.record_robots_denial()
            return None

        result = await self.fetcher.fetch(url)
        try:
            check_crawl_status(result)
        except TransientFetchError as e:
            if e.retry_after:
                self.fetcher.rate_limiter.set_cooldown(result.domain, e.retry_after)
            raise

        content = await self.store.upload_evidence(
            message.tenant_id, message.job_id, url, result.raw_html
        )

        async with self.session_factory() as db:
            crawl_result = CrawlResult(
                job_id=message.job_id,
                url=result.final_url,
                domain=result.domain,
                status_code=result.status_code,
                content_type=result.content_type,
                headers=result.headers,
                raw_content_ref=content.path,
            )
            db.add(crawl_result)
            await db.commit()

        await self.extraction_channel.publish(
            ExtractionMessage(
                crawl_result_id=crawl_result.id,
                url=result.final_url,
                content_ref=content.path,
            )
        )
        logger.debug(f"Processed URL: {url} -> crawl result {crawl_result.id}")
        return crawl_result.id

    async def on_exhausted(self, message: CrawlMessage, exc: Exception) -> None:
        """Record a crawl message that ran out of retries on its monitoring task.

        The task keeps its status so its other queries are still scheduled.
        """
        async with self.session_factory() as db:
            task = await db.get(MonitoringTask, message.job_id)
            if task is None:
                return
            task.last_error = (
                f"{datetime.utcnow().isoformat()} query {message.query!r}: "
                f"{type(exc).__name__}: {exc}"
            )
            await db.commit()
        logger.error(f"Crawl for task {message.job_id} gave up on query {message.query!r}: {exc}")
