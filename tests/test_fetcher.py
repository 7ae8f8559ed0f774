"""Tests for the polite fetcher."""

import httpx
import pytest
import respx

from copyguard.errors import PermanentURLError, TransientFetchError
from copyguard.ingest.fetcher import (
    FetchResult,
    Fetcher,
    check_crawl_status,
    extract_page,
    parse_robots_txt,
)
from copyguard.ingest.rate_limiter import DomainRateLimiter

PAGE = """
<html>
  <head><title> Título A - Download </title><style>body { color: red }</style></head>
  <body>
    <script>var tracking = "secret";</script>
    <h1>Título A</h1>
    <p>Capítulo   1.
       Era uma vez.</p>
    <noscript>enable javascript</noscript>
    <iframe src="https://ads.example"></iframe>
    <a href="/next">Next</a>
    <a href="https://other.example/page">Other</a>
    <a href="#top">Top</a>
    <a href="javascript:void(0)">Click</a>
  </body>
</html>
"""


@pytest.fixture
def fetcher():
    return Fetcher(rate_limiter=DomainRateLimiter(min_interval=0))


class TestExtractPage:
    def test_text_without_scripts_and_styles(self):
        page = extract_page(PAGE, "https://pirate.example/books/a")
        assert page.text == "Título A Capítulo 1. Era uma vez. Next Other Top Click"
        assert "secret" not in page.text
        assert "enable javascript" not in page.text
        assert "color" not in page.text

    def test_title(self):
        assert extract_page(PAGE, "https://pirate.example/").title == "Título A - Download"

    def test_links_are_absolute(self):
        page = extract_page(PAGE, "https://pirate.example/books/a")
        assert page.links == ["https://pirate.example/next", "https://other.example/page"]

    def test_truncates_text(self):
        page = extract_page("<p>" + "x" * 100 + "</p>", "https://a.example/", max_text_length=10)
        assert page.text == "x" * 10

    def test_fragment_with_entities(self):
        page = extract_page("<div>Caf&eacute; <b>forte</b><script>x()</script></div>", "https://a.example/")
        assert page.text == "Café forte"
        assert page.title is None

    def test_empty_document(self):
        page = extract_page("", "https://a.example/")
        assert page.text == ""
        assert page.title is None


class TestParseRobots:
    def test_disallow_all_for_everyone(self):
        assert parse_robots_txt("User-agent: *\nDisallow: /", "copyguard") is False

    def test_disallow_wildcard(self):
        assert parse_robots_txt("User-agent: *\nDisallow: /*", "copyguard") is False

    def test_path_rules_do_not_block(self):
        assert parse_robots_txt("User-agent: *\nDisallow: /private", "copyguard") is True

    def test_other_agent_blocked_only(self):
        robots = "User-agent: Googlebot\nDisallow: /\n\nUser-agent: *\nAllow: /"
        assert parse_robots_txt(robots, "copyguard") is True

    def test_our_token_matches_case_insensitively(self):
        robots = "User-Agent: CopyGuard-Bot\nDISALLOW: /  # keep out"
        assert parse_robots_txt(robots, "copyguard") is False

    def test_empty(self):
        assert parse_robots_txt("", "copyguard") is True


class TestRobotsCheck:
    @respx.mock
    async def test_missing_robots_allows(self, fetcher):
        respx.get("https://a.example/robots.txt").mock(return_value=httpx.Response(404))
        assert await fetcher.check_robots_txt("https://a.example/some/page") is True
        await fetcher.close()

    @respx.mock
    async def test_timeout_allows(self, fetcher):
        respx.get("https://a.example/robots.txt").mock(side_effect=httpx.ConnectTimeout("slow"))
        assert await fetcher.check_robots_txt("https://a.example/") is True
        await fetcher.close()

    @respx.mock
    async def test_disallow_denies_and_is_cached(self, fetcher):
        route = respx.get("https://a.example/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: *\nDisallow: /")
        )
        assert await fetcher.check_robots_txt("https://a.example/x") is False
        assert await fetcher.check_robots_txt("https://a.example/y") is False
        assert route.call_count == 1
        await fetcher.close()


class TestFetch:
    @respx.mock
    async def test_fetch_extracts_and_identifies(self, fetcher):
        route = respx.get("https://pirate.example/books/a").mock(
            return_value=httpx.Response(
                200, text=PAGE, headers={"content-type": "text/html; charset=utf-8"}
            )
        )
        result = await fetcher.fetch("https://pirate.example/books/a")
        await fetcher.close()

        assert result.status_code == 200
        assert result.final_url == "https://pirate.example/books/a"
        assert result.domain == "pirate.example"
        assert result.content_type == "text/html; charset=utf-8"
        assert result.title == "Título A - Download"
        assert "https://pirate.example/next" in result.links
        assert route.calls.last.request.headers["User-Agent"] == fetcher.user_agent

    @respx.mock
    async def test_follows_redirects(self, fetcher):
        respx.get("https://a.example/old").mock(
            return_value=httpx.Response(301, headers={"Location": "https://a.example/new"})
        )
        respx.get("https://a.example/new").mock(return_value=httpx.Response(200, text="<p>hi</p>"))
        result = await fetcher.fetch("https://a.example/old")
        await fetcher.close()
        assert result.final_url == "https://a.example/new"
        assert result.text == "hi"

    @respx.mock
    async def test_connection_error_is_transient(self, fetcher):
        respx.get("https://down.example/").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(TransientFetchError):
            await fetcher.fetch("https://down.example/")
        await fetcher.close()

    @respx.mock
    async def test_error_status_is_returned(self, fetcher):
        respx.get("https://a.example/gone").mock(return_value=httpx.Response(404))
        result = await fetcher.fetch("https://a.example/gone")
        await fetcher.close()
        assert result.status_code == 404


def _result(status: int, headers: dict | None = None) -> FetchResult:
    return FetchResult(
        final_url="https://a.example/",
        status_code=status,
        content_type="text/html",
        headers=headers or {},
        raw_html="",
        text="",
    )


class TestCrawlStatus:
    def test_success_passes(self):
        check_crawl_status(_result(200))

    def test_not_found_is_permanent(self):
        with pytest.raises(PermanentURLError):
            check_crawl_status(_result(404))

    def test_server_error_is_transient(self):
        with pytest.raises(TransientFetchError):
            check_crawl_status(_result(503))

    def test_rate_limited_carries_retry_after(self):
        with pytest.raises(TransientFetchError) as exc_info:
            check_crawl_status(_result(429, {"retry-after": "30"}))
        assert exc_info.value.retry_after == 30
