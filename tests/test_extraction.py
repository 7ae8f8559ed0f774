"""Tests for the extraction stage."""

import hashlib

import pytest
from sqlalchemy import func, select

from copyguard.db.models import (
    ConfidenceLevel,
    CrawlResult,
    Detection,
    DetectionStatus,
    Evidence,
    Work,
)
from copyguard.detect.fingerprint import simhash
from copyguard.errors import RecordNotFoundError
from copyguard.ingest.storage import ContentStore
from copyguard.worker.extraction_worker import ExtractionProcessor
from copyguard.worker.messages import ExtractionMessage

PIRATE_URL = "https://libgen.example/download/titulo-a.pdf"
PIRATE_PAGE = "<title>Título A - PDF</title><p>Título A por Ana Souza. ISBN 9781234.</p>"
PIRATE_TEXT = "Título A por Ana Souza. ISBN 9781234."


@pytest.fixture
def store(tmp_path):
    return ContentStore(tmp_path)


@pytest.fixture
def processor(session_factory, store):
    return ExtractionProcessor(session_factory, store=store, min_score=0.3)


async def _stored_page(session_factory, store, task, url: str, html: str) -> ExtractionMessage:
    domain = url.split("/")[2]
    content = await store.upload_evidence(task.tenant_id, task.id, url, html)
    async with session_factory() as db:
        crawl_result = CrawlResult(
            job_id=task.id,
            url=url,
            domain=domain,
            status_code=200,
            content_type="text/html",
            headers={},
            raw_content_ref=content.path,
        )
        db.add(crawl_result)
        await db.commit()
    return ExtractionMessage(crawl_result_id=crawl_result.id, url=url, content_ref=content.path)


async def _detections(session_factory) -> list[Detection]:
    async with session_factory() as db:
        return list((await db.execute(select(Detection))).scalars().all())


async def test_creates_detection_with_evidence(processor, session_factory, store, monitoring_task, work):
    message = await _stored_page(session_factory, store, monitoring_task, PIRATE_URL, PIRATE_PAGE)

    await processor.process(message)

    detections = await _detections(session_factory)
    assert len(detections) == 1
    detection = detections[0]
    assert detection.work_id == work.id
    assert detection.crawl_result_id == message.crawl_result_id
    assert detection.domain == "libgen.example"
    assert detection.confidence == ConfidenceLevel.HIGH.value
    assert detection.status == DetectionStatus.NEW.value
    assert detection.score >= 0.7
    assert "Suspicious domain: libgen.example" in detection.reasons
    assert detection.fingerprint_match is None

    async with session_factory() as db:
        evidence = await db.get(Evidence, detection.evidence_id)
        crawl_result = await db.get(CrawlResult, message.crawl_result_id)
    assert evidence.storage_path == message.content_ref
    assert evidence.sha256 == hashlib.sha256(PIRATE_TEXT.encode("utf-8")).hexdigest()
    assert evidence.simhash == simhash(PIRATE_TEXT)
    assert evidence.metadata_json["url"] == PIRATE_URL
    assert evidence.metadata_json["domain"] == "libgen.example"
    assert evidence.metadata_json["wordCount"] == 7
    assert crawl_result.processed_at is not None


async def test_redelivery_is_a_no_op(processor, session_factory, store, monitoring_task):
    message = await _stored_page(session_factory, store, monitoring_task, PIRATE_URL, PIRATE_PAGE)

    await processor.process(message)
    await processor.process(message)

    assert len(await _detections(session_factory)) == 1
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(Evidence)) == 1


async def test_existing_detection_is_not_duplicated(processor, session_factory, store, monitoring_task):
    message = await _stored_page(session_factory, store, monitoring_task, PIRATE_URL, PIRATE_PAGE)
    await processor.process(message)

    # Lose the processed marker, as if the first delivery died before acking
    async with session_factory() as db:
        crawl_result = await db.get(CrawlResult, message.crawl_result_id)
        crawl_result.processed_at = None
        await db.commit()

    await processor.process(message)
    assert len(await _detections(session_factory)) == 1


async def test_low_score_marks_processed_without_detection(processor, session_factory, store, monitoring_task):
    message = await _stored_page(
        session_factory, store, monitoring_task, "https://news.example/today", "<p>Weather report</p>"
    )

    await processor.process(message)

    assert await _detections(session_factory) == []
    async with session_factory() as db:
        crawl_result = await db.get(CrawlResult, message.crawl_result_id)
    assert crawl_result.processed_at is not None


async def test_excerpt_similarity_is_recorded(processor, session_factory, store, monitoring_task, work):
    async with session_factory() as db:
        stored_work = await db.get(Work, work.id)
        stored_work.excerpt = PIRATE_TEXT
        await db.commit()
    message = await _stored_page(session_factory, store, monitoring_task, PIRATE_URL, PIRATE_PAGE)

    await processor.process(message)

    [detection] = await _detections(session_factory)
    assert detection.fingerprint_match == 1.0


async def test_unknown_crawl_result_is_dropped(processor, session_factory):
    message = ExtractionMessage(crawl_result_id="missing", url=PIRATE_URL, content_ref="x")
    await processor.process(message)
    assert await _detections(session_factory) == []


async def test_missing_content_is_not_retryable(processor, session_factory, store, monitoring_task):
    message = await _stored_page(session_factory, store, monitoring_task, PIRATE_URL, PIRATE_PAGE)
    (store.root / message.content_ref).unlink()

    with pytest.raises(RecordNotFoundError):
        await processor.process(message)


async def test_exhaustion_records_error(processor, session_factory, store, monitoring_task):
    message = await _stored_page(session_factory, store, monitoring_task, PIRATE_URL, PIRATE_PAGE)

    await processor.on_exhausted(message, RuntimeError("classifier crashed"))

    async with session_factory() as db:
        crawl_result = await db.get(CrawlResult, message.crawl_result_id)
    assert crawl_result.error_message == "RuntimeError: classifier crashed"
    assert crawl_result.processed_at is None
