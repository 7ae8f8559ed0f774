"""Weighted infringement signals.

Each signal inspects one aspect of a page and returns a match strength in
[0, 1] together with a human-readable reason. The classifier multiplies the
strength by the signal's weight; weights sum to 1.0.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Known piracy domain fragments (substring match on the hostname)
SUSPICIOUS_DOMAINS = (
    "z-lib", "libgen", "sci-hub", "pdfdrive", "b-ok",
    "bookfi", "bookzz", "freebookspot", "4shared",
    "scribd-download", "pdf-download", "free-ebook",
)

# Infringement phrasing in URLs
SUSPICIOUS_URL_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"download.*pdf",
        r"free.*download",
        r"baixar.*gratis",
        r"livro.*gratis",
        r"ebook.*free",
        r"pirat",
    )
)

TITLE_MATCH_MIN = 0.5  # Title similarity must exceed this to count
_ISBN_STRIP_RE = re.compile(r"[-\s]")


class SignalType(str, Enum):
    DOMAIN_REPUTATION = "domain_reputation"
    URL_PATTERN = "url_pattern"
    TITLE_MATCH = "title_match"
    AUTHOR_PRESENCE = "author_presence"
    ISBN_MATCH = "isbn_match"
    KEYWORD_COVERAGE = "keyword_coverage"


SIGNAL_WEIGHTS: dict[SignalType, float] = {
    SignalType.DOMAIN_REPUTATION: 0.20,
    SignalType.URL_PATTERN: 0.10,
    SignalType.TITLE_MATCH: 0.30,
    SignalType.AUTHOR_PRESENCE: 0.15,
    SignalType.ISBN_MATCH: 0.15,
    SignalType.KEYWORD_COVERAGE: 0.10,
}


@dataclass(frozen=True)
class SignalHit:
    """A triggered signal."""

    signal: SignalType
    strength: float
    reason: str

    @property
    def contribution(self) -> float:
        return self.strength * SIGNAL_WEIGHTS[self.signal]


def check_domain_reputation(domain: str) -> Optional[SignalHit]:
    domain = domain.lower()
    if any(fragment in domain for fragment in SUSPICIOUS_DOMAINS):
        return SignalHit(SignalType.DOMAIN_REPUTATION, 1.0, f"Suspicious domain: {domain}")
    return None


def check_url_patterns(url: str) -> Optional[SignalHit]:
    if any(pattern.search(url) for pattern in SUSPICIOUS_URL_PATTERNS):
        return SignalHit(SignalType.URL_PATTERN, 1.0, "URL contains suspicious patterns")
    return None


def title_similarity(work_title: str, page_title: str, page_text: str) -> float:
    """1.0 if the page title contains the work title, 0.8 if the text does,
    else the Jaccard similarity of the two titles' word sets."""
    normalized_work = work_title.lower().strip()
    normalized_page = page_title.lower().strip()

    if not normalized_work:
        return 0.0
    if normalized_work in normalized_page:
        return 1.0
    if normalized_work in page_text.lower():
        return 0.8

    work_words = set(normalized_work.split())
    page_words = set(normalized_page.split())
    union = work_words | page_words
    if not union:
        return 0.0
    return len(work_words & page_words) / len(union)


def check_title(work_title: str, page_title: str, page_text: str) -> Optional[SignalHit]:
    match = title_similarity(work_title, page_title, page_text)
    if match > TITLE_MATCH_MIN:
        return SignalHit(SignalType.TITLE_MATCH, match, f"Title match: {round(match * 100)}%")
    return None


def check_author(author: Optional[str], page_text: str) -> Optional[SignalHit]:
    if not author or not author.strip():
        return None
    normalized_author = author.lower().strip()
    normalized_text = page_text.lower()

    if normalized_author in normalized_text:
        return SignalHit(SignalType.AUTHOR_PRESENCE, 1.0, "Author found in content")

    last_name = normalized_author.split()[-1]
    if last_name in normalized_text:
        return SignalHit(SignalType.AUTHOR_PRESENCE, 0.5, f"Author last name found in content: {last_name}")
    return None


def check_isbn(isbn: Optional[str], page_text: str) -> Optional[SignalHit]:
    if not isbn:
        return None
    normalized_isbn = _ISBN_STRIP_RE.sub("", isbn)
    if normalized_isbn and normalized_isbn in _ISBN_STRIP_RE.sub("", page_text):
        return SignalHit(SignalType.ISBN_MATCH, 1.0, f"ISBN match: {isbn}")
    return None


def check_keywords(keywords: list[str], page_text: str) -> Optional[SignalHit]:
    keywords = [k for k in keywords or [] if k and k.strip()]
    if not keywords:
        return None
    normalized_text = page_text.lower()
    matches = sum(1 for k in keywords if k.lower() in normalized_text)
    coverage = matches / len(keywords)
    if coverage > 0:
        return SignalHit(
            SignalType.KEYWORD_COVERAGE, coverage, f"Keywords matched: {round(coverage * 100)}%"
        )
    return None
