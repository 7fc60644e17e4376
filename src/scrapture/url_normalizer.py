"""URL canonicalization and fingerprinting helpers."""

import hashlib
import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from scrapture.constants import (
    DEFAULT_PORTS,
    NON_HTML_EXTENSIONS,
    TRACKING_PARAMS,
    URL_FINGERPRINT_LENGTH,
)
from scrapture.models import NormalizedUrl


def normalize_url(raw: str, base: Optional[str] = None) -> NormalizedUrl:
    """Canonicalize a URL into the form used as the frontier dedup key.

    Rules are applied in order: lowercase the host, drop the default port,
    drop the fragment, remove tracking parameters, sort the remaining query
    parameters by key, and strip a single trailing slash from any path other
    than ``/``.

    Args:
        raw: URL as found on the page (may be relative)
        base: Optional URL that relative references are resolved against

    Returns:
        NormalizedUrl; ``valid`` is False and ``normalized`` echoes ``raw``
        when the input cannot be parsed into an absolute http(s) URL.
    """
    try:
        candidate = (raw or "").strip()
        absolute = urljoin(base, candidate) if base else candidate
        parsed = urlsplit(absolute)

        scheme = parsed.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Unsupported scheme: {parsed.scheme or '(none)'}")

        host = (parsed.hostname or "").lower()
        if not host:
            raise ValueError("URL has no host")

        port = parsed.port  # raises ValueError on out-of-range ports
        netloc = host
        if ':' in host:
            netloc = f"[{host}]"
        if port is not None and port != DEFAULT_PORTS[scheme]:
            netloc = f"{netloc}:{port}"
        if parsed.username:
            userinfo = parsed.username
            if parsed.password:
                userinfo = f"{userinfo}:{parsed.password}"
            netloc = f"{userinfo}@{netloc}"

        params = [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if key.lower() not in TRACKING_PARAMS
        ]
        params.sort(key=lambda item: item[0])
        query = urlencode(params)

        path = parsed.path or '/'
        if path != '/' and path.endswith('/'):
            path = path[:-1]

        normalized = urlunsplit((scheme, netloc, path, query, ''))

        return NormalizedUrl(
            original=raw,
            normalized=normalized,
            fingerprint=hash_url(normalized),
            valid=True,
        )
    except (ValueError, TypeError, AttributeError) as e:
        return NormalizedUrl(
            original=raw,
            normalized=raw,
            fingerprint="",
            valid=False,
            error=str(e),
        )


def hash_url(url: str) -> str:
    """Short, stable fingerprint of a normalized URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:URL_FINGERPRINT_LENGTH]


def hash_content(content: str) -> str:
    """Full SHA-256 hex digest of page content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def is_same_domain(url1: str, url2: str, include_subdomains: bool = False) -> bool:
    """Check whether two URLs point at the same host.

    Args:
        url1: First URL
        url2: Second URL
        include_subdomains: Compare only the last two DNS labels

    Returns:
        True if the hosts match; False for unparsable input
    """
    try:
        host1 = (urlsplit(url1).hostname or "").lower()
        host2 = (urlsplit(url2).hostname or "").lower()
    except ValueError:
        return False

    if not host1 or not host2:
        return False

    if include_subdomains:
        return host1.split('.')[-2:] == host2.split('.')[-2:]

    return host1 == host2


def is_non_html_resource(url: str) -> bool:
    """True if the URL path ends with a known non-document extension."""
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return False
    return path.endswith(NON_HTML_EXTENSIONS)


def get_origin(url: str) -> str:
    """Return ``scheme://host[:port]`` for rate limiting keys."""
    try:
        parsed = urlsplit(url)
        return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"
    except ValueError:
        return ""


def is_valid_http_url(url: str) -> bool:
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.hostname)


def calculate_url_priority(url: str) -> int:
    """Heuristic importance of a URL (1-10), based on its path shape.

    Only used for narration; frontier ordering is strictly by depth.
    """
    path = urlsplit(url).path.lower()

    if path in ('/', ''):
        return 10
    if re.search(r'/(category|categories|archive|tag|tags|index)', path):
        return 8
    if 'sitemap' in path:
        return 9
    if re.search(r'/(product|article|post|blog)', path):
        return 6

    segments = [s for s in path.split('/') if s]
    if len(segments) == 1:
        return 7
    if len(segments) == 2:
        return 5

    return max(1, 5 - len(segments))
