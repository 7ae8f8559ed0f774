"""SQLAlchemy database models.

Field names mirror the records shared with the surrounding case-management
and reporting services; renaming a column is a compatibility break.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid4())


class TaskStatus(str, Enum):
    """Monitoring task lifecycle."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ConfidenceLevel(str, Enum):
    """Discrete bucket derived from a classification score."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DetectionStatus(str, Enum):
    NEW = "NEW"
    REVIEWING = "REVIEWING"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"


class CaseStatus(str, Enum):
    NEW = "NEW"
    VALIDATED = "VALIDATED"
    REMOVAL_REQUESTED = "REMOVAL_REQUESTED"
    REMOVED = "REMOVED"
    REJECTED = "REJECTED"
    CLOSED = "CLOSED"


class TakedownStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    REMOVED = "REMOVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


class TakedownPlatform(str, Enum):
    GOOGLE_SEARCH = "GOOGLE_SEARCH"
    GOOGLE_DRIVE = "GOOGLE_DRIVE"
    SCRIBD = "SCRIBD"
    TELEGRAM = "TELEGRAM"
    GENERIC_DMCA = "GENERIC_DMCA"
    OTHER = "OTHER"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Work(Base):
    """Registered written work. Owned by the catalogue service; read-only here."""

    __tablename__ = "works"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    isbn: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    excerpt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keywords: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    monitoring_tasks: Mapped[list["MonitoringTask"]] = relationship(
        "MonitoringTask", back_populates="work"
    )


class MonitoringTask(Base):
    """Periodic monitoring of a work across a list of search queries."""

    __tablename__ = "monitoring_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    work_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("works.id"), nullable=False
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    queries: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    schedule_spec: Mapped[str] = mapped_column(
        String(64), default="0 */6 * * *", nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), default=TaskStatus.ACTIVE.value, nullable=False
    )
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    work: Mapped["Work"] = relationship("Work", back_populates="monitoring_tasks")
    crawl_results: Mapped[list["CrawlResult"]] = relationship(
        "CrawlResult", back_populates="task"
    )

    __table_args__ = (
        Index("ix_monitoring_tasks_due", "status", "next_run_at"),
    )


class CrawlResult(Base):
    """One fetched page. ``processed_at`` marks extraction as done."""

    __tablename__ = "crawl_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("monitoring_tasks.id"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    headers: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    raw_content_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    task: Mapped["MonitoringTask"] = relationship(
        "MonitoringTask", back_populates="crawl_results"
    )


class Evidence(Base):
    """Immutable snapshot reference for a detection."""

    __tablename__ = "evidence"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    simhash: Mapped[str] = mapped_column(String(16), nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Detection(Base):
    """A page scored as a likely infringement of a work."""

    __tablename__ = "detections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    work_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("works.id"), nullable=False
    )
    crawl_result_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("crawl_results.id"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[str] = mapped_column(String(8), nullable=False)
    reasons: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    fingerprint_match: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    evidence_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("evidence.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), default=DetectionStatus.NEW.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    work: Mapped["Work"] = relationship("Work")
    evidence: Mapped["Evidence"] = relationship("Evidence")
    crawl_result: Mapped["CrawlResult"] = relationship("CrawlResult")

    __table_args__ = (
        UniqueConstraint("crawl_result_id", "work_id", name="uq_detection_crawl_result_work"),
    )


class Case(Base):
    """Analyst case opened from a detection. Owned by case management."""

    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    detection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("detections.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(32), default=CaseStatus.NEW.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    detection: Mapped["Detection"] = relationship("Detection")
    takedown_requests: Mapped[list["TakedownRequest"]] = relationship(
        "TakedownRequest", back_populates="case"
    )


class TakedownRequest(Base):
    """A removal request and its delivery state."""

    __tablename__ = "takedown_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    case_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cases.id"), nullable=False, index=True
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    template_used: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    request_payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    response: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), default=TakedownStatus.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    case: Mapped["Case"] = relationship("Case", back_populates="takedown_requests")
