"""Breadth-first frontier for one crawl session, backed by the crawl store."""

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional
from urllib.parse import urljoin

from scrapture.config import SessionConfig
from scrapture.database import AbstractCrawlStore
from scrapture.models import EntryStatus, FrontierEntry
from scrapture.robots_parser import RobotsPolicy
from scrapture.url_normalizer import (
    calculate_url_priority,
    is_non_html_resource,
    is_same_domain,
    normalize_url,
)

logger = logging.getLogger(__name__)

SKIP_MAX_DEPTH = "max depth exceeded"
SKIP_ROBOTS = "blocked by policy"


class EnqueueStatus(str, Enum):
    """Result status for frontier enqueue attempts."""

    ENQUEUED = "enqueued"
    SKIPPED_NON_HTML = "skipped_non_html"
    SKIPPED_INVALID_URL = "skipped_invalid_url"
    SKIPPED_OUT_OF_SCOPE = "skipped_out_of_scope"
    SKIPPED_SEEN = "skipped_seen"


class FrontierScheduler:
    """Admits discovered URLs and hands them out shallowest-first.

    Admission never raises; every rejection is reported as an
    EnqueueStatus. Depth and robots rules are enforced at selection time,
    so an entry over the depth limit is still recorded (as skipped).
    """

    def __init__(
        self,
        store: AbstractCrawlStore,
        session_id: int,
        config: SessionConfig,
        robots: Optional[RobotsPolicy] = None,
    ):
        self.store = store
        self.session_id = session_id
        self.config = config
        self.robots = robots

    def enqueue(self, url: str, depth: int, parent_url: Optional[str] = None) -> EnqueueStatus:
        """Try to add a URL to the frontier.

        Args:
            url: Absolute or seed-relative URL
            depth: Link distance from the seed
            parent_url: Page the URL was found on

        Returns:
            EnqueueStatus for the first check that failed, or ENQUEUED
        """
        if is_non_html_resource(url):
            return EnqueueStatus.SKIPPED_NON_HTML

        normalized = normalize_url(url, base=self.config.seed_url)
        if not normalized.valid:
            logger.debug(f"Invalid URL {url!r}: {normalized.error}")
            return EnqueueStatus.SKIPPED_INVALID_URL

        if self.config.same_domain_only and not is_same_domain(
            normalized.normalized,
            self.config.seed_url,
            include_subdomains=self.config.include_subdomains,
        ):
            return EnqueueStatus.SKIPPED_OUT_OF_SCOPE

        if self.store.find_frontier_entry(self.session_id, normalized.normalized):
            return EnqueueStatus.SKIPPED_SEEN

        entry = self.store.create_frontier_entry(
            session_id=self.session_id,
            url=url,
            normalized_url=normalized.normalized,
            url_hash=normalized.fingerprint,
            depth=depth,
            parent_url=parent_url,
        )
        if entry is None:
            return EnqueueStatus.SKIPPED_SEEN

        logger.debug(
            f"Enqueued {normalized.normalized} at depth {depth} "
            f"(priority {calculate_url_priority(normalized.normalized)})"
        )
        return EnqueueStatus.ENQUEUED

    def enqueue_many(
        self,
        urls: Iterable[str],
        depth: int,
        parent_url: Optional[str] = None,
    ) -> int:
        """Enqueue several URLs; returns how many were accepted."""
        return sum(
            1 for url in urls
            if self.enqueue(url, depth, parent_url) is EnqueueStatus.ENQUEUED
        )

    def next(self) -> Optional[FrontierEntry]:
        """Claim the next entry to visit.

        Entries deeper than max_depth or disallowed by robots.txt are marked
        skipped on the way. The returned entry is already marked running.

        Returns:
            The claimed entry, or None when the frontier is exhausted
        """
        while True:
            entry = self.store.next_queued_entry(self.session_id)
            if entry is None:
                return None

            if entry.depth > self.config.max_depth:
                self._skip(entry, SKIP_MAX_DEPTH)
                continue

            if not self._robots_allow(entry):
                self._skip(entry, SKIP_ROBOTS)
                continue

            self.store.update_frontier_entry(entry.id, status=EntryStatus.RUNNING)
            return replace(entry, status=EntryStatus.RUNNING)

    def mark_completed(
        self,
        entry: FrontierEntry,
        content_hash: Optional[str] = None,
        canonical_url: Optional[str] = None,
    ) -> None:
        self.store.update_frontier_entry(
            entry.id,
            status=EntryStatus.COMPLETED,
            content_hash=content_hash,
            canonical_url=canonical_url,
            crawled_at=datetime.now(),
        )

    def mark_failed(self, entry: FrontierEntry, error: str) -> None:
        self.store.update_frontier_entry(
            entry.id,
            status=EntryStatus.FAILED,
            error=error,
            crawled_at=datetime.now(),
        )

    def stats(self) -> Dict[str, int]:
        """Entry counts per status for this session."""
        return self.store.count_entries_by_status(self.session_id)

    def _robots_allow(self, entry: FrontierEntry) -> bool:
        """Both the URL as discovered and its normalized form must be allowed."""
        if self.robots is None:
            return True
        discovered = urljoin(self.config.seed_url, entry.url)
        return self.robots.is_allowed(discovered) and self.robots.is_allowed(entry.normalized_url)

    def _skip(self, entry: FrontierEntry, reason: str) -> None:
        logger.debug(f"Skipping {entry.normalized_url}: {reason}")
        self.store.update_frontier_entry(entry.id, status=EntryStatus.SKIPPED, error=reason)
