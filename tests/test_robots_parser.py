"""Tests for robots.txt parsing and evaluation."""

import httpx
import pytest

from scrapture.robots_parser import RobotsParser, RobotsPolicy, parse_robots_txt

ROBOTS_TXT = """
# Example robots file
User-agent: *
Disallow: /private
Allow: /private/public
Disallow: /tmp/*.bak$
Crawl-delay: 2

User-agent: BadBot
Disallow: /

Sitemap: https://example.com/sitemap.xml
Sitemap: https://example.com/news-sitemap.xml
"""


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParseRobotsTxt:
    """Tests for parse_robots_txt()."""

    def test_groups_for_wildcard_agent(self):
        policy = parse_robots_txt(ROBOTS_TXT)

        assert policy.disallow_rules == ["/private", "/tmp/*.bak$"]
        assert policy.allow_rules == ["/private/public"]
        assert policy.crawl_delay_ms == 2000

    def test_sitemaps_collected_regardless_of_agent(self):
        policy = parse_robots_txt(ROBOTS_TXT, user_agent="OtherBot")
        assert policy.sitemaps == [
            "https://example.com/sitemap.xml",
            "https://example.com/news-sitemap.xml",
        ]

    def test_specific_agent_group_applies(self):
        policy = parse_robots_txt(ROBOTS_TXT, user_agent="badbot")
        assert "/" in policy.disallow_rules

    def test_fractional_and_invalid_crawl_delay(self):
        assert parse_robots_txt("User-agent: *\nCrawl-delay: 0.5").crawl_delay_ms == 500
        assert parse_robots_txt("User-agent: *\nCrawl-delay: soon").crawl_delay_ms is None

    def test_empty_values_ignored(self):
        policy = parse_robots_txt("User-agent: *\nDisallow:\nAllow:\n")
        assert policy.disallow_rules == []
        assert policy.allow_rules == []
        assert policy.is_allowed("https://example.com/anything")

    def test_rules_before_any_user_agent_ignored(self):
        policy = parse_robots_txt("Disallow: /secret\nUser-agent: *\nDisallow: /admin")
        assert policy.disallow_rules == ["/admin"]


class TestIsAllowed:
    """Tests for RobotsPolicy.is_allowed()."""

    @pytest.fixture
    def policy(self):
        return parse_robots_txt(ROBOTS_TXT)

    def test_allow_beats_disallow(self, policy):
        assert policy.is_allowed("https://example.com/private/public/page")
        assert not policy.is_allowed("https://example.com/private/other")

    def test_prefix_match(self, policy):
        assert not policy.is_allowed("https://example.com/private")
        assert not policy.is_allowed("https://example.com/private-notes")
        assert policy.is_allowed("https://example.com/about/private")

    def test_wildcard_and_end_anchor(self, policy):
        assert not policy.is_allowed("https://example.com/tmp/cache/file.bak")
        assert policy.is_allowed("https://example.com/tmp/cache/file.bak.txt")

    def test_query_string_is_matched(self):
        policy = parse_robots_txt("User-agent: *\nDisallow: /*?session=")
        assert not policy.is_allowed("https://example.com/cart?session=1")
        assert policy.is_allowed("https://example.com/cart")

    def test_permissive_policy(self):
        policy = RobotsPolicy.permissive()
        assert policy.is_allowed("https://example.com/admin")
        assert policy.crawl_delay_ms is None
        assert policy.sitemaps == []


class TestRobotsParser:
    """Tests for fetching robots.txt."""

    @pytest.mark.asyncio
    async def test_fetch_and_parse(self):
        def handler(request):
            assert request.url.path == "/robots.txt"
            return httpx.Response(200, text="User-agent: *\nDisallow: /admin\n")

        async with mock_client(handler) as client:
            policy = await RobotsParser(client).parse("https://example.com/some/page")

        assert not policy.is_allowed("https://example.com/admin/x")
        assert policy.is_allowed("https://example.com/")

    @pytest.mark.asyncio
    async def test_missing_robots_allows_everything(self):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            policy = await RobotsParser(client).parse("https://example.com/")

        assert policy.is_allowed("https://example.com/admin")
        assert policy.crawl_delay_ms is None

    @pytest.mark.asyncio
    async def test_fetch_error_allows_everything(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            policy = await RobotsParser(client).parse("https://example.com/")

        assert policy.is_allowed("https://example.com/admin")
        assert policy.crawl_delay_ms is None
