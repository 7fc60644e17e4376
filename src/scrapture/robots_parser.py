"""robots.txt fetching and evaluation."""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from scrapture.constants import DEFAULT_ROBOTS_USER_AGENT
from scrapture.http_client import client_scope

logger = logging.getLogger(__name__)


@dataclass
class RobotsPolicy:
    """Rules from robots.txt that apply to one user agent.

    Allow rules take precedence: a URL matching any Allow pattern is
    permitted even if a Disallow pattern also matches.
    """

    allow_rules: List[str] = field(default_factory=list)
    disallow_rules: List[str] = field(default_factory=list)
    crawl_delay_ms: Optional[int] = None
    sitemaps: List[str] = field(default_factory=list)

    @classmethod
    def permissive(cls) -> "RobotsPolicy":
        """Allow-all policy used when robots.txt is missing or unreadable."""
        return cls()

    def is_allowed(self, url: str) -> bool:
        """Check whether a URL may be crawled.

        Args:
            url: Absolute URL to check

        Returns:
            True if crawling is permitted
        """
        try:
            parsed = urlsplit(url)
            target = parsed.path or '/'
            if parsed.query:
                target = f"{target}?{parsed.query}"

            for rule in self.allow_rules:
                if _matches(rule, target):
                    return True

            for rule in self.disallow_rules:
                if _matches(rule, target):
                    return False

            return True
        except Exception as e:
            logger.debug(f"robots.txt evaluation failed for {url}: {e}")
            return True


def _pattern_to_regex(pattern: str) -> str:
    anchored = pattern.endswith('$')
    if anchored:
        pattern = pattern[:-1]

    regex = '.*'.join(re.escape(part) for part in pattern.split('*'))
    return regex + ('$' if anchored else '')


def _matches(pattern: str, target: str) -> bool:
    return re.match(_pattern_to_regex(pattern), target) is not None


def parse_robots_txt(text: str, user_agent: str = DEFAULT_ROBOTS_USER_AGENT) -> RobotsPolicy:
    """Parse robots.txt content into a policy for one agent.

    Args:
        text: robots.txt body
        user_agent: Agent token to match against User-agent lines

    Returns:
        RobotsPolicy with the rules of every group addressed to ``*`` or
        the given agent, plus all Sitemap directives
    """
    policy = RobotsPolicy()
    agent = user_agent.lower()
    applies = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        if ':' not in line:
            continue

        directive, value = line.split(':', 1)
        directive = directive.strip().lower()
        value = value.split('#', 1)[0].strip()

        if directive == 'user-agent':
            token = value.lower()
            applies = token == '*' or token == agent
        elif directive == 'sitemap':
            if value:
                policy.sitemaps.append(value)
        elif not applies:
            continue
        elif directive == 'disallow':
            if value:
                policy.disallow_rules.append(value)
        elif directive == 'allow':
            if value:
                policy.allow_rules.append(value)
        elif directive == 'crawl-delay':
            try:
                policy.crawl_delay_ms = int(float(value) * 1000)
            except ValueError:
                logger.debug(f"Ignoring unparsable Crawl-delay: {value!r}")

    return policy


class RobotsParser:
    """Fetches robots.txt for a site and parses it."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_ROBOTS_USER_AGENT,
    ):
        """
        Args:
            client: Shared AsyncClient; a temporary one is used if None
            user_agent: Agent token matched against User-agent groups
        """
        self.client = client
        self.user_agent = user_agent

    async def parse(self, base_url: str) -> RobotsPolicy:
        """Load the robots policy for the site hosting base_url.

        Any network error or non-2xx status yields the permissive policy.
        """
        robots_url = urljoin(base_url, '/robots.txt')

        try:
            async with client_scope(self.client) as client:
                response = await client.get(robots_url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Could not load robots.txt from {robots_url}: {e}")
            return RobotsPolicy.permissive()

        if not response.is_success:
            logger.info(f"No robots.txt found at {robots_url} (status: {response.status_code})")
            return RobotsPolicy.permissive()

        policy = parse_robots_txt(response.text, self.user_agent)
        logger.info(
            f"Loaded robots.txt from {robots_url}: {len(policy.disallow_rules)} disallow, "
            f"{len(policy.allow_rules)} allow, {len(policy.sitemaps)} sitemaps"
        )
        return policy
