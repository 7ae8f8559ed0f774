"""Resolve monitoring queries to candidate URLs."""

import logging
from typing import Optional

import httpx

from copyguard.config import settings
from copyguard.errors import TransientFetchError

logger = logging.getLogger(__name__)


def is_url_query(query: str) -> bool:
    return query.startswith("http://") or query.startswith("https://")


class QueryResolver:
    """Turn a query into URLs to crawl.

    URL queries are crawled as-is. Free-text queries go to the Custom Search
    JSON API when credentials are configured and resolve to nothing otherwise.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        engine_id: Optional[str] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.api_key = settings.search_api_key if api_key is None else api_key
        self.engine_id = settings.search_engine_id if engine_id is None else engine_id

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.fetch_timeout_seconds)
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def search_enabled(self) -> bool:
        return bool(self.api_key and self.engine_id)

    async def resolve(self, query: str) -> list[str]:
        query = query.strip()
        if is_url_query(query):
            return [query]

        if not self.search_enabled:
            logger.debug('Query "%s" needs the search API, which is not configured', query)
            return []

        client = await self._get_client()
        try:
            resp = await client.get(
                settings.search_api_url,
                params={
                    "key": self.api_key,
                    "cx": self.engine_id,
                    "q": query,
                    "num": min(settings.search_results_per_query, 10),
                },
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 429 or exc.response.status_code >= 500:
                raise TransientFetchError(f"Search API returned {exc.response.status_code}") from exc
            logger.error('Search API rejected query "%s": %s', query, exc)
            return []
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Search API unreachable: {exc}") from exc

        items = resp.json().get("items") or []
        urls = [item["link"] for item in items if item.get("link")]
        logger.info('Query "%s" resolved to %d URL(s)', query, len(urls))
        return urls
