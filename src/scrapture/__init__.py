"""Scrapture: browser-rendered, polite, breadth-first web crawling."""

__version__ = "0.1.0"

from scrapture.config import SessionConfig, settings
from scrapture.database import AbstractCrawlStore, SqliteCrawlStore, StoreError, get_store
from scrapture.dedup import ContentDeduplicator
from scrapture.frontier import EnqueueStatus, FrontierScheduler
from scrapture.infrastructure import DomainRateLimiter
from scrapture.models import (
    CrawlJob,
    CrawlLog,
    CrawlResult,
    CrawlSession,
    EntryStatus,
    FrontierEntry,
    JobStatus,
    LogLevel,
    NormalizedUrl,
    PageVisit,
    SessionStatus,
)
from scrapture.robots_parser import RobotsParser, RobotsPolicy, parse_robots_txt
from scrapture.session import (
    CrawlCancelled,
    SessionOrchestrator,
    SessionState,
    create_session,
    run_session,
)
from scrapture.sitemap_parser import SitemapParser
from scrapture.url_normalizer import normalize_url

__all__ = [
    "__version__",
    "settings",
    "SessionConfig",
    # Storage
    "AbstractCrawlStore",
    "SqliteCrawlStore",
    "StoreError",
    "get_store",
    # Crawl engine
    "ContentDeduplicator",
    "DomainRateLimiter",
    "EnqueueStatus",
    "FrontierScheduler",
    "SessionOrchestrator",
    "SessionState",
    "CrawlCancelled",
    "create_session",
    "run_session",
    # Policy
    "RobotsParser",
    "RobotsPolicy",
    "parse_robots_txt",
    "SitemapParser",
    "normalize_url",
    # Models
    "CrawlJob",
    "CrawlLog",
    "CrawlResult",
    "CrawlSession",
    "EntryStatus",
    "FrontierEntry",
    "JobStatus",
    "LogLevel",
    "NormalizedUrl",
    "PageVisit",
    "SessionStatus",
]
