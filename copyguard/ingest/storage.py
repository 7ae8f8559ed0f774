"""Raw content store for crawled pages and evidence."""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from copyguard.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredContent:
    path: str
    sha256: str
    size: int


class ContentStore:
    """Filesystem-backed content store.

    References returned by ``upload_*`` are relative keys such as
    ``evidence/<tenant>/<job>/<ms>-<urlhash>``; they are what crawl results
    and evidence records persist.
    """

    def __init__(self, root: Optional[str | Path] = None):
        self.root = Path(root or settings.content_store_path).resolve()

    def _resolve(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Content key escapes store root: {key}")
        return path

    async def upload_content(self, content: bytes | str, key: str) -> StoredContent:
        data = content.encode("utf-8") if isinstance(content, str) else content
        sha256 = hashlib.sha256(data).hexdigest()
        path = self._resolve(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return StoredContent(path=key, sha256=sha256, size=len(data))

    async def upload_evidence(
        self,
        tenant_id: str,
        job_id: str,
        url: str,
        content: bytes | str,
    ) -> StoredContent:
        """Store raw page content under a per-tenant, per-task key."""
        timestamp = int(time.time() * 1000)
        url_hash = hashlib.md5(url.encode()).hexdigest()[:8]
        key = f"evidence/{tenant_id}/{job_id}/{timestamp}-{url_hash}"
        return await self.upload_content(content, key)

    async def get_content(self, key: str) -> bytes:
        """Read stored content back.

        Raises:
            FileNotFoundError: If nothing is stored under ``key``
        """
        path = self._resolve(key)
        return await asyncio.to_thread(path.read_bytes)
