"""Extraction queue consumer: classify stored pages and record detections."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from copyguard import metrics
from copyguard.config import settings
from copyguard.db.models import (
    CrawlResult,
    Detection,
    DetectionStatus,
    Evidence,
    MonitoringTask,
)
from copyguard.detect.classifier import Classifier, WorkProfile
from copyguard.detect.fingerprint import generate_fingerprint, similarity, simhash
from copyguard.errors import RecordNotFoundError
from copyguard.ingest.fetcher import extract_page
from copyguard.ingest.storage import ContentStore
from copyguard.worker.messages import ExtractionMessage

logger = logging.getLogger(__name__)


class ExtractionProcessor:
    """Turn a CrawlResult into at most one Detection per work.

    ``processed_at`` on the crawl result is the idempotency marker: a
    redelivered message for a processed result is a no-op. The
    (crawl_result_id, work_id) unique constraint backs this up against
    concurrent deliveries.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        store: Optional[ContentStore] = None,
        classifier: Optional[Classifier] = None,
        min_score: Optional[float] = None,
    ):
        if session_factory is None:
            from copyguard.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.store = store or ContentStore()
        self.classifier = classifier or Classifier()
        self.min_score = settings.detection_min_score if min_score is None else min_score

    async def _load_text(self, crawl_result: CrawlResult, content_ref: str):
        ref = content_ref or crawl_result.raw_content_ref
        if not ref:
            raise RecordNotFoundError(f"Crawl result {crawl_result.id} has no stored content")
        try:
            raw = await self.store.get_content(ref)
        except FileNotFoundError as e:
            raise RecordNotFoundError(f"Stored content missing: {ref}") from e
        return extract_page(raw.decode("utf-8", errors="replace"), crawl_result.url)

    async def process(self, message: ExtractionMessage) -> None:
        crawl_result_id = message.crawl_result_id
        logger.info(f"Processing extraction for crawl result {crawl_result_id}: {message.url}")

        async with self.session_factory() as db:
            crawl_result = await db.get(
                CrawlResult,
                crawl_result_id,
                options=[selectinload(CrawlResult.task).selectinload(MonitoringTask.work)],
            )
            if crawl_result is None or crawl_result.task is None:
                logger.warning(f"Crawl result not found: {crawl_result_id}")
                return
            if crawl_result.processed_at is not None:
                logger.info(f"Crawl result {crawl_result_id} already processed, skipping")
                return

            work = crawl_result.task.work
            if work is None:
                raise RecordNotFoundError(f"Work not found: {crawl_result.task.work_id}")

            page = await self._load_text(crawl_result, message.content_ref)
            result = self.classifier.classify(
                WorkProfile.from_model(work), message.url, page.text, page.title
            )

            created = False
            if result.score >= self.min_score:
                existing = await db.scalar(
                    select(Detection.id).where(
                        Detection.crawl_result_id == crawl_result_id,
                        Detection.work_id == work.id,
                    )
                )
                if existing is None:
                    fp = generate_fingerprint(page.text)
                    fingerprint_match = None
                    if work.excerpt:
                        fingerprint_match = round(similarity(fp.simhash, simhash(work.excerpt)), 4)

                    evidence = Evidence(
                        storage_path=crawl_result.raw_content_ref or message.content_ref,
                        content_type=crawl_result.content_type or "text/html",
                        sha256=fp.sha256,
                        simhash=fp.simhash,
                        metadata_json={
                            "url": message.url,
                            "domain": crawl_result.domain,
                            "crawledAt": crawl_result.created_at.isoformat(),
                            "textLength": fp.text_length,
                            "wordCount": fp.word_count,
                        },
                    )
                    db.add(evidence)
                    await db.flush()

                    db.add(Detection(
                        work_id=work.id,
                        crawl_result_id=crawl_result_id,
                        url=message.url,
                        domain=crawl_result.domain,
                        score=result.score,
                        confidence=result.confidence.value,
                        reasons=result.reasons,
                        fingerprint_match=fingerprint_match,
                        evidence_id=evidence.id,
                        status=DetectionStatus.NEW.value,
                    ))
                    created = True
                else:
                    logger.info(f"Detection for crawl result {crawl_result_id} already exists")
            else:
                logger.debug(
                    f"Skipped detection for {message.url} "
                    f"(score {result.score:.2f} below threshold)"
                )

            crawl_result.processed_at = datetime.utcnow()
            try:
                await db.commit()
            except IntegrityError:
                # Another delivery created the detection first
                await db.rollback()
                created = False
                logger.info(f"Detection for crawl result {crawl_result_id} created concurrently")
                await db.execute(
                    update(CrawlResult)
                    .where(CrawlResult.id == crawl_result_id)
                    .values(processed_at=datetime.utcnow())
                )
                await db.commit()

        metrics.record_classification(created, result.confidence.value)
        if created:
            logger.info(f"Created detection for {message.url} with score {result.score:.2f}")

    async def on_exhausted(self, message: ExtractionMessage, exc: Exception) -> None:
        """Record the failure on the crawl result once retries run out."""
        async with self.session_factory() as db:
            crawl_result = await db.get(CrawlResult, message.crawl_result_id)
            if crawl_result is None:
                return
            crawl_result.error_message = f"{type(exc).__name__}: {exc}"
            await db.commit()
