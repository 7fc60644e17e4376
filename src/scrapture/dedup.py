"""Content-level duplicate detection within one crawl session."""

import logging
from typing import Set, Tuple

from scrapture.url_normalizer import hash_content

logger = logging.getLogger(__name__)


class ContentDeduplicator:
    """
    Remembers SHA-256 fingerprints of rendered pages.

    Two URLs that render byte-identical HTML share a fingerprint; the second
    one is reported as a duplicate so its extraction can be skipped.
    A fingerprint is only recorded once its page was fully extracted, so a
    failed visit never hides the same content at another URL.
    """

    def __init__(self):
        self._hashes: Set[str] = set()

    def fingerprint(self, content: str) -> str:
        return hash_content(content)

    def seen(self, content_hash: str) -> bool:
        return content_hash in self._hashes

    def record(self, content_hash: str) -> None:
        self._hashes.add(content_hash)

    def check(self, content: str) -> Tuple[str, bool]:
        """
        Fingerprint content without recording it.

        Args:
            content: Rendered page HTML

        Returns:
            Tuple of (content_hash, already_recorded)
        """
        content_hash = self.fingerprint(content)
        duplicate = content_hash in self._hashes
        if duplicate:
            logger.debug(f"Duplicate content detected: {content_hash[:12]}")
        return content_hash, duplicate

    def __len__(self) -> int:
        return len(self._hashes)

    def __contains__(self, content_hash: str) -> bool:
        return content_hash in self._hashes
