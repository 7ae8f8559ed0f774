"""Infringement classifier combining weighted signals."""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from copyguard.db.models import ConfidenceLevel, Work
from copyguard.detect import signals
from copyguard.errors import RecordNotFoundError

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_MIN = 0.7
MEDIUM_CONFIDENCE_MIN = 0.4


@dataclass(frozen=True)
class WorkProfile:
    """The parts of a registered work the classifier reads."""

    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, work: Work) -> "WorkProfile":
        return cls(
            title=work.title,
            author=work.author,
            isbn=work.isbn,
            keywords=tuple(work.keywords or ()),
        )


@dataclass
class ClassificationResult:
    score: float
    confidence: ConfidenceLevel
    reasons: list[str] = field(default_factory=list)
    hits: list[signals.SignalHit] = field(default_factory=list)


def confidence_for(score: float) -> ConfidenceLevel:
    if score >= HIGH_CONFIDENCE_MIN:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_CONFIDENCE_MIN:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class Classifier:
    """Score a page against a work. Deterministic and stateless."""

    def classify(
        self,
        work: WorkProfile,
        url: str,
        page_text: str,
        page_title: Optional[str] = None,
    ) -> ClassificationResult:
        page_text = page_text or ""
        domain = (urlparse(url).hostname or "").lower()

        candidates = [
            signals.check_domain_reputation(domain),
            signals.check_url_patterns(url),
            signals.check_title(work.title, page_title or "", page_text),
            signals.check_author(work.author, page_text),
            signals.check_isbn(work.isbn, page_text),
            signals.check_keywords(list(work.keywords), page_text),
        ]
        hits = [hit for hit in candidates if hit is not None]

        # Rounded so bucket boundaries are not at the mercy of float sums
        score = round(min(sum(hit.contribution for hit in hits), 1.0), 4)
        confidence = confidence_for(score)

        logger.debug(
            "Classification result for %s: score=%.2f, confidence=%s",
            url, score, confidence.value,
        )
        return ClassificationResult(
            score=score,
            confidence=confidence,
            reasons=[hit.reason for hit in hits],
            hits=hits,
        )

    async def classify_for_work(
        self,
        db: AsyncSession,
        work_id: str,
        url: str,
        page_text: str,
        page_title: Optional[str] = None,
    ) -> ClassificationResult:
        """Load the work and classify the page against it.

        Raises:
            RecordNotFoundError: If the work does not exist
        """
        work = await db.get(Work, work_id)
        if work is None:
            raise RecordNotFoundError(f"Work not found: {work_id}")
        return self.classify(WorkProfile.from_model(work), url, page_text, page_title)


classifier = Classifier()
