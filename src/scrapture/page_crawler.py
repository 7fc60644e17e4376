"""
Single-page visit: render, capture, extract.

A PageCrawler turns one URL into a PageVisit. Each visit runs in a fresh
isolated browser context that is closed on every exit path. Navigation and
network failures propagate to the caller, which decides how to record them.
"""
import asyncio
import logging
import secrets
from pathlib import Path
from typing import Iterable, List, Optional, Set
from urllib.parse import urljoin

from scrapture.analyzer import PageAnalyzer
from scrapture.config import SessionConfig
from scrapture.constants import API_PATH_MARKERS, DEFAULT_MAX_API_RESPONSES, SCROLL_PAUSE_SECONDS
from scrapture.dedup import ContentDeduplicator
from scrapture.html_parser import extract_metadata, extract_structured_data, parse_html
from scrapture.models import ApiResponse, PageVisit
from scrapture.url_normalizer import is_valid_http_url

logger = logging.getLogger(__name__)

# Records URLs a single-page app navigates to via the History API
SPA_CAPTURE_SCRIPT = """
(() => {
    window.__spaUrls = [];
    const record = (url) => { if (url) window.__spaUrls.push(String(url)); };
    const pushState = history.pushState;
    const replaceState = history.replaceState;
    history.pushState = function(state, title, url) {
        record(url);
        return pushState.apply(history, arguments);
    };
    history.replaceState = function(state, title, url) {
        record(url);
        return replaceState.apply(history, arguments);
    };
})();
"""

SPA_URLS_SCRIPT = "() => window.__spaUrls || []"

ANCHOR_HREFS_SCRIPT = "elements => elements.map(el => el.href || el.getAttribute('href')).filter(href => href)"

SCROLL_STEP_SCRIPT = "() => window.scrollBy(0, window.innerHeight)"

SCROLL_STATE_SCRIPT = """
() => {
    const height = document.body ? document.body.scrollHeight : 0;
    return {
        height: height,
        atBottom: window.innerHeight + window.scrollY >= height - 1,
    };
}
"""


class ApiResponseCollector:
    """
    Captures JSON responses from API-like endpoints while a page loads.

    Registered as a page "response" listener. Body reads run as tasks so the
    listener never blocks; drain() waits for all of them before the caller
    reads the captured list.
    """

    def __init__(self, max_responses: int = DEFAULT_MAX_API_RESPONSES):
        self.max_responses = max_responses
        self.responses: List[ApiResponse] = []
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def is_api_response(response) -> bool:
        content_type = response.headers.get("content-type", "")
        return "application/json" in content_type and any(
            marker in response.url for marker in API_PATH_MARKERS
        )

    def __call__(self, response) -> None:
        if len(self.responses) + len(self._tasks) >= self.max_responses:
            return
        if not self.is_api_response(response):
            return

        task = asyncio.ensure_future(self._read(response))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _read(self, response) -> None:
        try:
            body = await response.json()
        except Exception as e:
            logger.debug(f"Could not read API response body {response.url}: {e}")
            return

        if len(self.responses) < self.max_responses:
            self.responses.append(ApiResponse(
                url=response.url,
                method=response.request.method,
                status=response.status,
                body=body,
            ))

    async def drain(self) -> None:
        """Wait for every pending body read."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()


class PageCrawler:
    """Renders and extracts a single page per visit() call."""

    def __init__(
        self,
        renderer,
        config: SessionConfig,
        dedup: ContentDeduplicator,
        analyzer: Optional[PageAnalyzer] = None,
        session_id: Optional[int] = None,
    ):
        """
        Args:
            renderer: Object whose new_page() yields a page in a fresh context
            config: Session options (capture flags, timeouts, scroll limits)
            dedup: Session-scoped content fingerprint set
            analyzer: Text-generation client used when classify_pages is on
            session_id: Prefix for screenshot file names
        """
        self.renderer = renderer
        self.config = config
        self.dedup = dedup
        self.analyzer = analyzer
        self.session_id = session_id

    async def visit(self, url: str, depth: int) -> PageVisit:
        """
        Render a URL and extract everything the crawl stores.

        Args:
            url: Page to load
            depth: Link distance from the seed (carried into the result)

        Returns:
            PageVisit; ``duplicate`` is True (and extraction skipped) when
            the rendered HTML was already seen in this session

        Raises:
            Exception: Navigation, timeout and browser errors propagate
        """
        async with self.renderer.new_page() as page:
            collector = None
            if self.config.capture_api_responses and self.config.max_api_responses > 0:
                collector = ApiResponseCollector(self.config.max_api_responses)
                page.on("response", collector)

            try:
                await page.add_init_script(SPA_CAPTURE_SCRIPT)

                logger.info(f"Visiting: {url} (depth {depth})")
                await page.goto(
                    url,
                    wait_until=self.config.wait_until,
                    timeout=self.config.navigation_timeout_ms,
                )

                if self.config.wait_for_selector:
                    await page.wait_for_selector(
                        self.config.wait_for_selector,
                        timeout=self.config.navigation_timeout_ms,
                    )

                if self.config.auto_scroll:
                    await self._auto_scroll(page)

                if collector:
                    await collector.drain()

                html = await page.content()
                final_url = page.url or url

                content_hash, duplicate = self.dedup.check(html)
                if duplicate:
                    logger.info(f"Duplicate content detected: {url}")
                    return PageVisit(
                        url=url,
                        depth=depth,
                        final_url=final_url,
                        content_hash=content_hash,
                        duplicate=True,
                    )

                hrefs = await page.eval_on_selector_all(self.config.link_selector, ANCHOR_HREFS_SCRIPT)
                spa_urls = await page.evaluate(SPA_URLS_SCRIPT)

                parsed = parse_html(html, base_url=final_url)
                structured_data = extract_structured_data(html)
                metadata = extract_metadata(html)

                canonical = metadata.get("canonical")
                if canonical:
                    canonical = urljoin(final_url, canonical)

                links = merge_links(final_url, hrefs or [], spa_urls or [])

                logger.info(
                    f"Extracted: {len(links)} links, {len(structured_data)} JSON-LD, "
                    f"{parsed.word_count} words"
                )

                screenshot_path = None
                if self.config.capture_screenshot:
                    screenshot_path = await self._screenshot(page)

                classification = None
                if self.analyzer and self.config.classify_pages:
                    classification = await self.analyzer.classify_page(parsed.body_text, parsed.title)

                self.dedup.record(content_hash)

                return PageVisit(
                    url=url,
                    depth=depth,
                    final_url=final_url,
                    html=html,
                    content_hash=content_hash,
                    links=links,
                    canonical_url=canonical,
                    title=parsed.title,
                    structured_data=structured_data,
                    metadata=metadata,
                    extracted_text=parsed.body_text,
                    word_count=parsed.word_count,
                    api_responses=list(collector.responses) if collector else [],
                    screenshot_path=screenshot_path,
                    classification=classification,
                )
            finally:
                if collector:
                    collector.cancel()
                    page.remove_listener("response", collector)

    async def _auto_scroll(self, page) -> None:
        """Scroll one viewport at a time until the page stops growing."""
        state = await page.evaluate(SCROLL_STATE_SCRIPT)
        last_height = state["height"]

        for _ in range(self.config.max_scrolls):
            await page.evaluate(SCROLL_STEP_SCRIPT)
            await asyncio.sleep(SCROLL_PAUSE_SECONDS)

            state = await page.evaluate(SCROLL_STATE_SCRIPT)
            if state["height"] == last_height and state["atBottom"]:
                break
            last_height = state["height"]

    async def _screenshot(self, page) -> str:
        directory = Path(self.config.screenshot_dir)
        directory.mkdir(parents=True, exist_ok=True)

        prefix = self.session_id if self.session_id is not None else "page"
        path = directory / f"{prefix}-{secrets.token_hex(8)}.png"

        await page.screenshot(path=str(path), full_page=True)
        return str(path)


def merge_links(base_url: str, *groups: Iterable[str]) -> List[str]:
    """Resolve hrefs against the page URL and de-duplicate, keeping order.

    Non-http(s) targets (mailto:, javascript:, tel:) are dropped.
    """
    merged = {}
    for group in groups:
        for href in group:
            if not href:
                continue
            absolute = urljoin(base_url, str(href).strip())
            if is_valid_http_url(absolute):
                merged.setdefault(absolute, None)
    return list(merged)
