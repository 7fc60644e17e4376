"""Data models for crawl sessions, frontier entries and their results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SessionStatus(str, Enum):
    """Lifecycle of a crawl session."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class EntryStatus(str, Enum):
    """Lifecycle of a frontier entry."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobStatus(str, Enum):
    """Lifecycle of a page visit attempt."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass
class NormalizedUrl:
    """Outcome of URL normalization."""

    original: str
    normalized: str
    fingerprint: str
    valid: bool
    error: Optional[str] = None


@dataclass
class CrawlSession:
    """One crawl run, from seed URL to terminal status."""

    id: int
    seed_url: str
    max_depth: int
    max_pages: int
    same_domain_only: bool = True
    follow_sitemap: bool = True
    respect_robots: bool = True
    status: SessionStatus = SessionStatus.QUEUED
    config: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class FrontierEntry:
    """A discovered URL within a session.

    ``normalized_url`` is unique per session and is the dedup key; ``url``
    keeps the string as it was discovered.
    """

    id: int
    session_id: int
    url: str
    normalized_url: str
    url_hash: str
    depth: int
    status: EntryStatus = EntryStatus.QUEUED
    parent_url: Optional[str] = None
    content_hash: Optional[str] = None
    canonical_url: Optional[str] = None
    error: Optional[str] = None
    discovered_at: datetime = field(default_factory=datetime.now)
    crawled_at: Optional[datetime] = None


@dataclass
class CrawlJob:
    """An attempted page visit (as opposed to a mere discovery)."""

    id: int
    session_id: int
    url: str
    depth: int
    status: JobStatus = JobStatus.RUNNING
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None


@dataclass
class ApiResponse:
    """JSON response captured while a page was loading."""

    url: str
    method: str
    status: int
    body: Any = None

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "method": self.method,
            "status": self.status,
            "body": self.body,
        }


@dataclass
class CrawlResult:
    """Extracted payload for a job. Immutable once stored."""

    id: int
    job_id: int
    url: str
    html_content: str = ""
    screenshot_path: Optional[str] = None
    api_responses: list[dict] = field(default_factory=list)
    structured_data: list[Any] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    extracted_text: str = ""
    content_hash: Optional[str] = None
    classification: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class CrawlLog:
    """Append-only operational message.

    ``job_id`` is None for session-level narration (robots, sitemaps,
    frontier exhaustion) that happens outside any page visit.
    """

    id: int
    session_id: int
    level: LogLevel
    message: str
    job_id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class PageVisit:
    """Everything one page visit produced."""

    url: str
    depth: int
    final_url: Optional[str] = None
    html: str = ""
    content_hash: Optional[str] = None
    duplicate: bool = False
    links: list[str] = field(default_factory=list)
    canonical_url: Optional[str] = None
    title: str = ""
    structured_data: list[Any] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    extracted_text: str = ""
    word_count: int = 0
    api_responses: list[ApiResponse] = field(default_factory=list)
    screenshot_path: Optional[str] = None
    classification: Optional[str] = None
