"""Sitemap discovery and parsing."""

import gzip
import logging
import re
import zlib
from typing import List, Optional, Set
from urllib.parse import urljoin
from xml.etree import ElementTree as ET

import httpx

from scrapture.constants import DEFAULT_MAX_SITEMAP_DEPTH, SITEMAP_PROBE_PATHS
from scrapture.http_client import client_scope
from scrapture.robots_parser import RobotsParser, RobotsPolicy

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'


class SitemapParser:
    """
    Find and parse XML sitemaps to extract URLs for crawling.

    Supports:
    - Standard sitemap.xml files
    - Sitemap index files (recursively expanded, cycles ignored)
    - Gzipped sitemaps
    - XML that a browser or proxy wrapped in HTML
    """

    # XML namespaces used in sitemaps
    NAMESPACES = {
        'sm': 'http://www.sitemaps.org/schemas/sitemap/0.9',
        'image': 'http://www.google.com/schemas/sitemap-image/1.1',
        'video': 'http://www.google.com/schemas/sitemap-video/1.1',
        'news': 'http://www.google.com/schemas/sitemap-news/0.9',
    }

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_depth: int = DEFAULT_MAX_SITEMAP_DEPTH,
        max_urls: Optional[int] = None,
    ):
        """
        Initialize the sitemap parser.

        Args:
            client: Shared AsyncClient; a temporary one is used per call if None
            max_depth: Nesting limit for sitemap indexes
            max_urls: Maximum number of URLs to return (None for all)
        """
        self.client = client
        self.max_depth = max_depth
        self.max_urls = max_urls

    async def discover(self, base_url: str, robots: Optional[RobotsPolicy] = None) -> List[str]:
        """
        Find sitemap URLs for a site.

        Probes conventional locations with HEAD requests and adds Sitemap:
        directives from robots.txt.

        Args:
            base_url: Any URL on the site
            robots: Already-loaded robots policy; fetched if None

        Returns:
            De-duplicated sitemap URLs in discovery order
        """
        found: List[str] = []

        async with client_scope(self.client) as client:
            for path in SITEMAP_PROBE_PATHS:
                candidate = urljoin(base_url, path)
                try:
                    response = await client.head(candidate)
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    logger.debug(f"Sitemap probe failed for {candidate}: {e}")
                    continue
                if response.is_success:
                    logger.info(f"Found sitemap: {candidate}")
                    found.append(candidate)

            if robots is None:
                robots = await RobotsParser(client).parse(base_url)

        found.extend(robots.sitemaps)
        return list(dict.fromkeys(found))

    async def parse(self, sitemap_url: str) -> List[str]:
        """
        Parse a sitemap (or sitemap index) and return all page URLs.

        Args:
            sitemap_url: URL to the sitemap.xml or sitemap index

        Returns:
            De-duplicated page URLs in document order
        """
        urls: List[str] = []
        visited: Set[str] = set()

        async with client_scope(self.client) as client:
            await self._fetch_and_parse(client, sitemap_url, urls, visited, depth=0)

        return self._dedupe(urls)

    async def parse_many(self, sitemap_urls: List[str]) -> List[str]:
        """Parse several sitemaps and return the union of their URLs."""
        urls: List[str] = []
        visited: Set[str] = set()

        async with client_scope(self.client) as client:
            for sitemap_url in sitemap_urls:
                if self._limit_reached(urls):
                    break
                await self._fetch_and_parse(client, sitemap_url, urls, visited, depth=0)

        return self._dedupe(urls)

    def parse_content(self, content: str, source_url: str = "") -> List[str]:
        """
        Parse an already-fetched urlset document.

        Child sitemaps of an index are returned as-is, not fetched.
        """
        root = self._parse_root(content, source_url)
        if root is None:
            return []

        if self._local_name(root.tag) == 'sitemapindex':
            return self._dedupe(self._locs(root, 'sitemap'))
        return self._dedupe(self._locs(root, 'url'))

    async def _fetch_and_parse(
        self,
        client: httpx.AsyncClient,
        sitemap_url: str,
        urls: List[str],
        visited: Set[str],
        depth: int,
    ) -> None:
        """Recursively fetch and parse sitemaps."""
        if sitemap_url in visited:
            logger.debug(f"Skipping already visited sitemap: {sitemap_url}")
            return
        if depth > self.max_depth:
            logger.warning(f"Sitemap nesting exceeds {self.max_depth}, skipping {sitemap_url}")
            return
        if self._limit_reached(urls):
            return

        visited.add(sitemap_url)
        logger.info(f"Fetching sitemap: {sitemap_url}")

        try:
            response = await client.get(sitemap_url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Failed to fetch sitemap {sitemap_url}: {e}")
            return

        content = self._decode(response.content, sitemap_url)
        if content is None:
            return

        root = self._parse_root(content, sitemap_url)
        if root is None:
            return

        root_tag = self._local_name(root.tag)
        if root_tag == 'sitemapindex':
            for child_url in self._locs(root, 'sitemap'):
                logger.info(f"Found child sitemap: {child_url}")
                await self._fetch_and_parse(client, child_url, urls, visited, depth + 1)
        elif root_tag == 'urlset':
            page_urls = self._locs(root, 'url')
            urls.extend(page_urls)
            logger.info(f"Extracted {len(page_urls)} URLs from {sitemap_url}")
        else:
            logger.warning(f"Unknown sitemap root element: {root_tag}")

    def _decode(self, body: bytes, sitemap_url: str) -> Optional[str]:
        if body.startswith(GZIP_MAGIC):
            try:
                body = gzip.decompress(body)
            except (OSError, EOFError, zlib.error) as e:
                logger.error(f"Failed to decompress sitemap {sitemap_url}: {e}")
                return None
        return body.decode('utf-8', errors='replace')

    def _parse_root(self, content: str, source_url: str) -> Optional[ET.Element]:
        try:
            return ET.fromstring(self._clean_xml_content(content))
        except ET.ParseError as e:
            logger.error(f"Failed to parse sitemap XML {source_url}: {e}")
            return None

    def _clean_xml_content(self, content: str) -> str:
        """Clean XML content by removing any HTML wrapper."""
        content = content.lstrip('\ufeff').strip()

        # Remove DOCTYPE if present
        content = re.sub(r'<!DOCTYPE[^>]*>', '', content)

        # Remove HTML tags if the XML is wrapped
        if '<html' in content.lower():
            match = re.search(r'(<\?xml.*?</(?:urlset|sitemapindex)>)', content, re.DOTALL)
            if match:
                return match.group(1)

            match = re.search(r'(<(?:urlset|sitemapindex).*?</(?:urlset|sitemapindex)>)', content, re.DOTALL)
            if match:
                return match.group(1)

        return content

    def _locs(self, root: ET.Element, entry_tag: str) -> List[str]:
        """Collect <loc> text of each direct <url> or <sitemap> child."""
        locs = []
        for entry in root:
            if self._local_name(entry.tag) != entry_tag:
                continue
            loc = entry.find('sm:loc', self.NAMESPACES)
            if loc is None:
                loc = entry.find('loc')
            if loc is not None and loc.text and loc.text.strip():
                locs.append(loc.text.strip())
        return locs

    def _dedupe(self, urls: List[str]) -> List[str]:
        unique = list(dict.fromkeys(urls))
        if self.max_urls:
            unique = unique[:self.max_urls]
        return unique

    def _limit_reached(self, urls: List[str]) -> bool:
        if self.max_urls and len(set(urls)) >= self.max_urls:
            logger.info(f"Reached max URLs limit ({self.max_urls})")
            return True
        return False

    @staticmethod
    def _local_name(tag: str) -> str:
        return tag.split('}')[-1] if '}' in tag else tag
