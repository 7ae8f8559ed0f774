"""Per-domain politeness delay for the crawler."""

import asyncio
import logging
import random
import time
from collections import defaultdict
from typing import Optional

from copyguard.config import settings

logger = logging.getLogger(__name__)


class DomainRateLimiter:
    """Enforce a minimum interval (with jitter) between requests to one domain."""

    def __init__(self, min_interval: Optional[float] = None, jitter: float = 0.25):
        self.min_interval = (
            settings.crawl_min_interval_seconds if min_interval is None else min_interval
        )
        self.jitter = jitter
        self.locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.last_request: dict[str, float] = {}
        self.domain_cooldowns: dict[str, float] = {}  # Domain -> cooldown until (monotonic)

    async def acquire(self, domain: str) -> None:
        """Wait until a request to ``domain`` is allowed."""
        if self.min_interval <= 0 and domain not in self.domain_cooldowns:
            return

        async with self.locks[domain]:
            now = time.monotonic()

            cooldown_until = self.domain_cooldowns.get(domain, 0.0)
            if now < cooldown_until:
                await asyncio.sleep(cooldown_until - now)
                now = time.monotonic()

            interval = self.min_interval
            if interval > 0 and self.jitter > 0:
                interval += random.uniform(0, interval * self.jitter)

            elapsed = now - self.last_request.get(domain, 0.0)
            wait_needed = max(0.0, interval - elapsed)
            if wait_needed > 0:
                await asyncio.sleep(wait_needed)

            self.last_request[domain] = time.monotonic()

    def set_cooldown(self, domain: str, seconds: float) -> None:
        """Block requests to ``domain`` for ``seconds`` (e.g. after a 429)."""
        self.domain_cooldowns[domain] = time.monotonic() + seconds
        logger.info("Cooling down %s for %.0fs", domain, seconds)
