"""Polite page fetcher: robots.txt policy, identifying headers, text extraction."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx
from selectolax.lexbor import LexborHTMLParser

from copyguard import metrics
from copyguard.config import settings
from copyguard.errors import PermanentURLError, TransientFetchError
from copyguard.ingest.rate_limiter import DomainRateLimiter

logger = logging.getLogger(__name__)

# Transport errors worth retrying through queue backoff
RETRYABLE_EXC = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.ReadError,
)

STRIPPED_TAGS = "script, style, noscript, iframe"
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PageContent:
    """Plain text, title and absolute links extracted from HTML."""

    text: str
    title: Optional[str] = None
    links: list[str] = field(default_factory=list)


@dataclass
class FetchResult:
    """Outcome of fetching one URL."""

    final_url: str
    status_code: int
    content_type: str
    headers: dict[str, str]
    raw_html: str
    text: str
    title: Optional[str] = None
    links: list[str] = field(default_factory=list)

    @property
    def domain(self) -> str:
        return urlparse(self.final_url).hostname or ""


def extract_page(html: str, base_url: str, max_text_length: Optional[int] = None) -> PageContent:
    """Derive plain text, title and absolute links from an HTML document.

    Script, style, noscript and iframe content is removed before the text is
    collected; whitespace is collapsed and the text truncated to
    ``max_text_length`` characters.
    """
    limit = settings.max_text_length if max_text_length is None else max_text_length
    tree = LexborHTMLParser(html or "")

    title_node = tree.css_first("title")
    title = title_node.text(strip=True) if title_node is not None else ""

    for node in tree.css(STRIPPED_TAGS):
        node.decompose()

    links: list[str] = []
    for node in tree.css("a[href]"):
        href = (node.attributes.get("href") or "").strip()
        if not href or href.startswith("#") or href.lower().startswith("javascript:"):
            continue
        try:
            links.append(urljoin(base_url, href))
        except ValueError:
            continue

    body = tree.body or tree.root
    raw_text = body.text(separator=" ") if body is not None else ""
    text = _WHITESPACE_RE.sub(" ", raw_text).strip()

    return PageContent(text=text[:limit], title=title or None, links=links)


def parse_robots_txt(content: str, identity_token: str) -> bool:
    """Decide whether this crawler may crawl an origin at all.

    Rules are read line by line, case-insensitively. A ``user-agent`` line
    opens a block that applies to us when it names ``*`` or contains our
    identity token; a ``disallow`` of ``/`` or ``/*`` inside such a block
    denies the whole origin. Per-path rules are not evaluated.
    """
    token = identity_token.lower()
    applies = False
    for line in content.splitlines():
        trimmed = line.split("#", 1)[0].strip().lower()
        if trimmed.startswith("user-agent:"):
            agent = trimmed[len("user-agent:"):].strip()
            applies = agent == "*" or (bool(token) and token in agent)
        elif applies and trimmed.startswith("disallow:"):
            path = trimmed[len("disallow:"):].strip()
            if path in ("/", "/*"):
                return False
    return True


class Fetcher:
    """HTTP fetcher honoring robots.txt and per-domain politeness."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        user_agent: Optional[str] = None,
        identity_token: Optional[str] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.rate_limiter = rate_limiter or DomainRateLimiter()
        self.user_agent = user_agent or settings.crawler_user_agent
        self.identity_token = identity_token or settings.crawler_identity_token
        self._robots_cache: dict[str, tuple[bool, float]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def close(self):
        """Close HTTP client if we created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def default_headers(self) -> dict[str, str]:
        """Headers sent with every request; the User-Agent identifies the crawler."""
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
        }

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a URL and extract its text, title and links.

        Returns a result for any HTTP status; callers decide how to treat
        non-2xx responses (see ``check_crawl_status``).

        Raises:
            TransientFetchError: On timeouts, DNS and connection failures
        """
        domain = urlparse(url).hostname or ""
        await self.rate_limiter.acquire(domain)

        client = await self._get_client()
        start = time.monotonic()
        try:
            resp = await client.get(
                url,
                headers=self.default_headers(),
                timeout=httpx.Timeout(settings.fetch_timeout_seconds),
                follow_redirects=True,
            )
        except RETRYABLE_EXC as exc:
            metrics.record_fetch("error", time.monotonic() - start)
            raise TransientFetchError(f"{type(exc).__name__} fetching {url}: {exc}") from exc
        except httpx.TransportError as exc:
            metrics.record_fetch("error", time.monotonic() - start)
            raise TransientFetchError(f"Transport error fetching {url}: {exc}") from exc

        metrics.record_fetch(str(resp.status_code), time.monotonic() - start)

        final_url = str(resp.url)
        html = resp.text
        page = extract_page(html, final_url)
        logger.debug("Fetched %s -> %s (%d)", url, final_url, resp.status_code)

        return FetchResult(
            final_url=final_url,
            status_code=resp.status_code,
            content_type=resp.headers.get("content-type", "text/html"),
            headers=dict(resp.headers),
            raw_html=html,
            text=page.text,
            title=page.title,
            links=page.links,
        )

    async def check_robots_txt(self, origin_url: str) -> bool:
        """Return False only when robots.txt blocks this crawler from the origin.

        A missing file, a non-success response, a timeout or any other
        fetch error allows crawling.
        """
        parsed = urlparse(origin_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"

        cached = self._robots_cache.get(origin)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        client = await self._get_client()
        try:
            resp = await client.get(
                f"{origin}/robots.txt",
                headers={"User-Agent": self.user_agent},
                timeout=httpx.Timeout(settings.robots_timeout_seconds),
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            logger.debug("robots.txt unavailable for %s (%s); allowing", origin, exc)
            return True

        if not resp.is_success:
            allowed = True
        else:
            allowed = parse_robots_txt(resp.text, self.identity_token)

        self._robots_cache[origin] = (allowed, time.monotonic() + settings.robots_cache_ttl_seconds)
        return allowed


def check_crawl_status(result: FetchResult) -> None:
    """Classify a non-2xx fetch result.

    Raises:
        TransientFetchError: 429 or 5xx responses
        PermanentURLError: Any other 4xx response
    """
    sc = result.status_code
    if sc == 429:
        retry_after = result.headers.get("retry-after")
        raise TransientFetchError(
            f"429 for {result.final_url}",
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if sc >= 500:
        raise TransientFetchError(f"{sc} for {result.final_url}")
    if sc >= 400:
        raise PermanentURLError(f"{sc} for {result.final_url}")
