"""Shared fixtures: in-memory database, queue and mail doubles."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from copyguard.db.models import (
    Base,
    Case,
    CaseStatus,
    ConfidenceLevel,
    CrawlResult,
    Detection,
    Evidence,
    MonitoringTask,
    TaskStatus,
    Work,
)


@dataclass
class Published:
    message: Any
    priority: int
    max_attempts: Optional[int]


class FakeChannel:
    """In-memory stand-in for a queue channel (publish side only)."""

    def __init__(self, name: str = "fake", fail_for: Optional[set[str]] = None):
        self.name = name
        self.published: list[Published] = []
        self.fail_for = fail_for or set()
        self.closed = False

    @property
    def messages(self) -> list:
        return [p.message for p in self.published]

    async def publish(self, message, priority: int = 0, max_attempts: Optional[int] = None) -> str:
        job_id = getattr(message, "job_id", None)
        if job_id in self.fail_for:
            raise ConnectionError(f"queue unavailable for {job_id}")
        self.published.append(Published(message, priority, max_attempts))
        return f"job-{len(self.published)}"

    async def close(self) -> None:
        self.closed = True


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


@dataclass
class FakeTransport:
    """Mail transport that records messages instead of sending them."""

    sent: list[SentMail] = field(default_factory=list)
    error: Optional[Exception] = None

    async def send(self, to: str, subject: str, body: str) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append(SentMail(to, subject, body))
        return f"<msg-{len(self.sent)}@test>"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
async def work(session_factory) -> Work:
    async with session_factory() as db:
        work = Work(
            tenant_id="tenant-1",
            title="Título A",
            author="Ana Souza",
            isbn="978-1-234",
            keywords=[],
        )
        db.add(work)
        await db.commit()
    return work


@pytest.fixture
async def monitoring_task(session_factory, work) -> MonitoringTask:
    async with session_factory() as db:
        task = MonitoringTask(
            work_id=work.id,
            tenant_id=work.tenant_id,
            queries=["https://pirate.example/titulo-a"],
            status=TaskStatus.ACTIVE.value,
            next_run_at=datetime(2026, 1, 1),
        )
        db.add(task)
        await db.commit()
    return task


@pytest.fixture
async def case(session_factory, work, monitoring_task) -> Case:
    """A case opened on a detection of ``work`` at pirate.example."""
    async with session_factory() as db:
        crawl_result = CrawlResult(
            job_id=monitoring_task.id,
            url="https://pirate.example/titulo-a",
            domain="pirate.example",
            status_code=200,
            content_type="text/html",
            headers={},
            raw_content_ref="evidence/tenant-1/x/1-abcd",
        )
        evidence = Evidence(
            storage_path="evidence/tenant-1/x/1-abcd",
            content_type="text/html",
            sha256="0" * 64,
            simhash="0" * 16,
            metadata_json={},
        )
        db.add_all([crawl_result, evidence])
        await db.flush()

        detection = Detection(
            work_id=work.id,
            crawl_result_id=crawl_result.id,
            url=crawl_result.url,
            domain=crawl_result.domain,
            score=0.8,
            confidence=ConfidenceLevel.HIGH.value,
            reasons=["Title match: 100%"],
            evidence_id=evidence.id,
        )
        db.add(detection)
        await db.flush()

        case = Case(detection_id=detection.id, status=CaseStatus.VALIDATED.value)
        db.add(case)
        await db.commit()
    return case


@pytest.fixture
def claimant() -> dict:
    return {
        "claimant_name": "Editora Exemplo",
        "claimant_email": "legal@editora.example",
    }
