"""Exact and near-duplicate content fingerprints."""

import hashlib
import re
from dataclasses import dataclass

HASH_BITS = 64
SHINGLE_SIZE = 3
MIN_WORD_LENGTH = 3  # words of 2 characters or fewer are not features

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class Fingerprint:
    sha256: str
    simhash: str  # 16 hex digits
    text_length: int
    word_count: int

    def to_dict(self) -> dict:
        return {
            "sha256": self.sha256,
            "simhash": self.simhash,
            "textLength": self.text_length,
            "wordCount": self.word_count,
        }


def extract_shingles(text: str) -> list[str]:
    """Overlapping 3-word shingles of lowercased, punctuation-stripped text."""
    words = [
        w for w in _PUNCTUATION_RE.sub("", text.lower()).split()
        if len(w) >= MIN_WORD_LENGTH
    ]
    return [
        " ".join(words[i:i + SHINGLE_SIZE])
        for i in range(len(words) - SHINGLE_SIZE + 1)
    ]


def _feature_hash(feature: str) -> int:
    # First 64 bits of MD5
    return int(hashlib.md5(feature.encode("utf-8")).hexdigest()[:16], 16)


def simhash(text: str) -> str:
    """64-bit simhash of ``text`` as 16 lowercase hex digits.

    Every shingle votes +1 on bit positions set in its hash and -1 on the
    others; a bit of the result is set iff its vote total is positive.
    """
    votes = [0] * HASH_BITS
    for feature in extract_shingles(text):
        h = _feature_hash(feature)
        for i in range(HASH_BITS):
            votes[i] += 1 if (h >> i) & 1 else -1

    value = 0
    for i, total in enumerate(votes):
        if total > 0:
            value |= 1 << i
    return f"{value:016x}"


def hamming_distance(hash1: str | int, hash2: str | int) -> int:
    h1 = int(hash1, 16) if isinstance(hash1, str) else hash1
    h2 = int(hash2, 16) if isinstance(hash2, str) else hash2
    return bin(h1 ^ h2).count("1")


def similarity(hash1: str | int, hash2: str | int) -> float:
    """Near-duplicate score in [0, 1]: 1 - hamming distance / 64."""
    return 1 - hamming_distance(hash1, hash2) / HASH_BITS


def generate_fingerprint(content: str | bytes) -> Fingerprint:
    """Fingerprint content: SHA-256 of the raw bytes plus a text simhash."""
    if isinstance(content, bytes):
        raw = content
        text = content.decode("utf-8", errors="replace")
    else:
        raw = content.encode("utf-8")
        text = content

    return Fingerprint(
        sha256=hashlib.sha256(raw).hexdigest(),
        simhash=simhash(text),
        text_length=len(text),
        word_count=len(text.split()),
    )
