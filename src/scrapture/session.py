"""
Crawl session orchestration.

Drives one session from seed URL to a terminal status: launches the
browser, loads robots.txt and sitemaps, seeds the frontier, then visits
pages one at a time until the frontier is exhausted or the page budget is
spent. Every outcome is persisted through the crawl store.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

import httpx

from scrapture.analyzer import PageAnalyzer
from scrapture.browser_config import BrowserConfig
from scrapture.browser_renderer import BrowserRenderer
from scrapture.config import SessionConfig
from scrapture.database import AbstractCrawlStore, StoreError
from scrapture.dedup import ContentDeduplicator
from scrapture.frontier import EnqueueStatus, FrontierScheduler
from scrapture.http_client import client_scope
from scrapture.infrastructure import DomainRateLimiter
from scrapture.models import (
    CrawlJob,
    CrawlSession,
    FrontierEntry,
    JobStatus,
    LogLevel,
    PageVisit,
    SessionStatus,
)
from scrapture.page_crawler import PageCrawler
from scrapture.robots_parser import RobotsParser, RobotsPolicy
from scrapture.sitemap_parser import SitemapParser
from scrapture.url_normalizer import get_origin, normalize_url

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "crawl cancelled"

LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class CrawlCancelled(Exception):
    """Raised inside a run when the stop event fires."""


@dataclass
class SessionState:
    """Mutable per-session crawl state. Never shared between sessions."""

    session_id: int
    dedup: ContentDeduplicator = field(default_factory=ContentDeduplicator)
    rate_limiter: DomainRateLimiter = field(default_factory=DomainRateLimiter)
    robots: Optional[RobotsPolicy] = None
    attempted: int = 0


def create_session(
    store: AbstractCrawlStore,
    config: Union[SessionConfig, Dict[str, Any]],
) -> CrawlSession:
    """
    Validate options and persist a queued session.

    Args:
        store: Crawl store
        config: SessionConfig or a dict of its fields

    Returns:
        The stored session (status queued)

    Raises:
        pydantic.ValidationError: If the options are invalid
    """
    if not isinstance(config, SessionConfig):
        config = SessionConfig(**config)

    session = store.create_session(config)
    logger.info(f"Created session {session.id} for {config.seed_url}")
    return session


class SessionOrchestrator:
    """
    Runs a single crawl session.

    Pages are visited one at a time, so visits never overlap and the
    frontier is consumed in non-decreasing depth order.
    """

    def __init__(
        self,
        store: AbstractCrawlStore,
        session_id: int,
        renderer=None,
        client: Optional[httpx.AsyncClient] = None,
        analyzer: Optional[PageAnalyzer] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        """
        Args:
            store: Crawl store holding the session
            session_id: Id of a session created with create_session()
            renderer: Browser renderer; a BrowserRenderer is built if None
            client: AsyncClient for robots.txt and sitemap fetches
            analyzer: Text-generation client for page classification
            stop_event: When set, the in-flight visit is aborted and the
                session ends failed

        Raises:
            StoreError: If the session does not exist
        """
        session = store.get_session(session_id)
        if session is None:
            raise StoreError(f"Unknown session: {session_id}")

        self.store = store
        self.session_id = session_id
        self.config = SessionConfig(**session.config)
        self.client = client
        self.stop_event = stop_event

        self.renderer = renderer or BrowserRenderer(
            BrowserConfig(user_agent=self.config.get_user_agent())
        )
        if analyzer is None and self.config.classify_pages:
            analyzer = PageAnalyzer()
        self.analyzer = analyzer

        self.state = SessionState(
            session_id=session_id,
            rate_limiter=DomainRateLimiter(self.config.request_delay_ms),
        )
        self.crawler = PageCrawler(
            self.renderer,
            self.config,
            self.state.dedup,
            analyzer=self.analyzer,
            session_id=session_id,
        )
        self.frontier: Optional[FrontierScheduler] = None

    async def run(self) -> CrawlSession:
        """
        Execute the session to a terminal status.

        Errors are recorded on the session rather than raised. Task
        cancellation is the exception: partial state is persisted and
        CancelledError propagates.

        Returns:
            The session as stored after the run
        """
        session = self.store.get_session(self.session_id)
        if session.status.is_terminal:
            logger.warning(f"Session {self.session_id} already {session.status.value}")
            return session

        self.store.update_session(
            self.session_id,
            status=SessionStatus.RUNNING,
            started_at=datetime.now(),
        )
        self._log(LogLevel.INFO, f"Session started: {self.config.seed_url}")

        try:
            async with client_scope(self.client, self.config.get_user_agent()) as client:
                async with self.renderer:
                    await self._prepare(client)
                    await self._drain()
        except CrawlCancelled:
            self._finish(SessionStatus.FAILED, CANCELLED_MESSAGE)
        except asyncio.CancelledError:
            self._finish(SessionStatus.FAILED, CANCELLED_MESSAGE)
            raise
        except Exception as e:
            self._log(LogLevel.ERROR, f"Session failed: {e}")
            self._finish(SessionStatus.FAILED, str(e) or type(e).__name__)
        else:
            self._finish(SessionStatus.COMPLETED)

        return self.store.get_session(self.session_id)

    async def _prepare(self, client: httpx.AsyncClient) -> None:
        """Load politeness policy and seed the frontier."""
        seed = self.config.seed_url

        robots = None
        if self.config.respect_robots:
            robots = await RobotsParser(client, self.config.robots_user_agent).parse(seed)
            self.state.robots = robots
            delay = f"{robots.crawl_delay_ms}ms" if robots.crawl_delay_ms is not None else "none"
            self._log(
                LogLevel.INFO,
                f"robots.txt: {len(robots.disallow_rules)} disallow rules, crawl delay {delay}",
            )

        self.frontier = FrontierScheduler(self.store, self.session_id, self.config, robots=robots)

        sitemap_urls = []
        if self.config.follow_sitemap:
            parser = SitemapParser(client, max_depth=self.config.max_sitemap_depth)
            sitemaps = await parser.discover(seed, robots=robots)
            if sitemaps:
                sitemap_urls = await parser.parse_many(sitemaps)
            self._log(
                LogLevel.INFO,
                f"Found {len(sitemaps)} sitemaps with {len(sitemap_urls)} URLs",
            )

        status = self.frontier.enqueue(seed, 0)
        if status is not EnqueueStatus.ENQUEUED:
            raise ValueError(f"Seed URL rejected by frontier: {status.value}")
        if sitemap_urls:
            accepted = self.frontier.enqueue_many(sitemap_urls, 1, parent_url=seed)
            self._log(LogLevel.INFO, f"Enqueued {accepted} URLs from sitemaps")

    async def _drain(self) -> None:
        """Visit frontier entries until exhausted or out of budget."""
        max_pages = self.config.max_pages

        while self.state.attempted < max_pages:
            self._check_stopped()

            entry = self.frontier.next()
            if entry is None:
                self._log(LogLevel.INFO, "Frontier exhausted")
                break

            self.state.attempted += 1
            await self._process(entry)
        else:
            self._log(LogLevel.INFO, f"Page budget reached ({max_pages} pages)")

        stats = self.frontier.stats()
        self._log(
            LogLevel.INFO,
            f"Crawl finished: {stats['completed']} completed, {stats['failed']} failed, "
            f"{stats['skipped']} skipped",
        )

        for origin in self.state.rate_limiter.origins:
            metrics = self.state.rate_limiter.get_metrics(origin)
            self._log(
                LogLevel.DEBUG,
                f"Rate limiting {origin}: {metrics.total_requests} requests, "
                f"{metrics.total_wait_time:.1f}s waited",
            )

    async def _process(self, entry: FrontierEntry) -> None:
        job = None
        try:
            await self._race(self._throttle(entry))
            job = self.store.create_job(self.session_id, entry.url, entry.depth)
            visit = await self._race(
                asyncio.wait_for(
                    self.crawler.visit(entry.url, entry.depth),
                    timeout=self.config.visit_timeout_seconds,
                )
            )
        except (CrawlCancelled, asyncio.CancelledError):
            self._fail(entry, job, CANCELLED_MESSAGE)
            raise
        except asyncio.TimeoutError:
            self._fail(entry, job, f"visit timed out after {self.config.visit_timeout_seconds}s")
            return
        except Exception as e:
            self._fail(entry, job, str(e) or type(e).__name__)
            return

        self._record(entry, job, visit)

    def _record(self, entry: FrontierEntry, job: CrawlJob, visit: PageVisit) -> None:
        """Persist a successful visit and enqueue what it discovered."""
        if visit.duplicate:
            self.store.update_job(job.id, status=JobStatus.COMPLETED, completed_at=datetime.now())
            self.frontier.mark_completed(entry, content_hash=visit.content_hash)
            self._log(LogLevel.INFO, f"Duplicate content detected: {entry.url}", job_id=job.id)
            return

        self.store.create_result(
            job.id,
            entry.url,
            html_content=visit.html,
            screenshot_path=visit.screenshot_path,
            api_responses=[response.to_dict() for response in visit.api_responses],
            structured_data=visit.structured_data,
            metadata=visit.metadata,
            extracted_text=visit.extracted_text,
            content_hash=visit.content_hash,
            classification=visit.classification,
        )
        self.store.update_job(job.id, status=JobStatus.COMPLETED, completed_at=datetime.now())
        self.frontier.mark_completed(
            entry,
            content_hash=visit.content_hash,
            canonical_url=visit.canonical_url,
        )

        accepted = self.frontier.enqueue_many(visit.links, entry.depth + 1, parent_url=entry.url)

        if visit.canonical_url:
            canonical = normalize_url(visit.canonical_url)
            if canonical.valid and canonical.normalized != entry.normalized_url:
                self.frontier.enqueue(visit.canonical_url, entry.depth, parent_url=entry.url)

        self._log(
            LogLevel.INFO,
            f"Crawled [{self.state.attempted}/{self.config.max_pages}]: {entry.url} "
            f"({len(visit.links)} links, {accepted} new)",
            job_id=job.id,
        )

    async def _throttle(self, entry: FrontierEntry) -> float:
        delay_ms = self.config.request_delay_ms
        if self.state.robots is not None and self.state.robots.crawl_delay_ms is not None:
            delay_ms = self.state.robots.crawl_delay_ms
        return await self.state.rate_limiter.wait(get_origin(entry.normalized_url), delay_ms)

    async def _race(self, coro):
        """Await coro, aborting it if the stop event fires first."""
        if self.stop_event is None:
            return await coro

        work = asyncio.ensure_future(coro)
        stop = asyncio.ensure_future(self.stop_event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            stop.cancel()
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise

        if work.done():
            stop.cancel()
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise CrawlCancelled()

    def _check_stopped(self) -> None:
        if self.stop_event is not None and self.stop_event.is_set():
            raise CrawlCancelled()

    def _fail(self, entry: FrontierEntry, job: Optional[CrawlJob], error: str) -> None:
        self.frontier.mark_failed(entry, error)
        if job is not None:
            self.store.update_job(
                job.id,
                status=JobStatus.FAILED,
                error=error,
                completed_at=datetime.now(),
            )
        self._log(
            LogLevel.ERROR,
            f"Failed to crawl: {entry.url} - {error}",
            job_id=job.id if job else None,
        )

    def _finish(self, status: SessionStatus, error: Optional[str] = None) -> None:
        self.store.update_session(
            self.session_id,
            status=status,
            error=error,
            completed_at=datetime.now(),
        )
        level = LogLevel.INFO if status is SessionStatus.COMPLETED else LogLevel.ERROR
        suffix = f": {error}" if error else ""
        self._log(level, f"Session {status.value}{suffix}")

    def _log(self, level: LogLevel, message: str, job_id: Optional[int] = None) -> None:
        """Write narration to the module logger and the session's log table."""
        logger.log(LOG_LEVELS[level], f"[session {self.session_id}] {message}")
        self.store.append_log(self.session_id, level, message, job_id=job_id)


async def run_session(
    store: AbstractCrawlStore,
    config: Union[SessionConfig, Dict[str, Any]],
    **kwargs,
) -> CrawlSession:
    """Create a session and run it to completion."""
    session = create_session(store, config)
    return await SessionOrchestrator(store, session.id, **kwargs).run()
