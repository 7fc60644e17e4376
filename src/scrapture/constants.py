# src/scrapture/constants.py
"""Centralized constants for the crawler.

This module contains magic numbers and fixed lists that are used across
multiple modules. For per-session options, see config.py and SessionConfig.
"""

# =============================================================================
# URL Normalization Constants
# =============================================================================

# Query parameters stripped during normalization (matched case-insensitively)
TRACKING_PARAMS = frozenset({
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'msclkid', '_ga', 'mc_cid', 'mc_eid',
    'ref', 'source', 'campaign_id', 'ad_id', 'affiliate_id',
})

# Path suffixes that are never worth a browser render
NON_HTML_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.svg',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.7z',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.json', '.xml', '.ico', '.woff', '.woff2', '.ttf', '.eot',
)

# Default ports dropped from the netloc
DEFAULT_PORTS = {'http': 80, 'https': 443}

# Length of the URL fingerprint (hex characters of SHA-256)
URL_FINGERPRINT_LENGTH = 16


# =============================================================================
# Politeness Constants
# =============================================================================

# Minimum milliseconds between requests to the same origin
DEFAULT_REQUEST_DELAY_MS = 1000

# User agent token used when matching robots.txt groups
DEFAULT_ROBOTS_USER_AGENT = "*"

# Timeout for robots.txt and sitemap fetches (seconds)
POLICY_FETCH_TIMEOUT_SECONDS = 10.0


# =============================================================================
# Sitemap Constants
# =============================================================================

# Conventional sitemap locations probed relative to the site root
SITEMAP_PROBE_PATHS = (
    '/sitemap.xml',
    '/sitemap_index.xml',
    '/sitemap-index.xml',
    '/sitemap1.xml',
    '/sitemaps/sitemap.xml',
)

# Maximum nesting of sitemap indexes
DEFAULT_MAX_SITEMAP_DEPTH = 10


# =============================================================================
# Session Defaults
# =============================================================================

DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_PAGES = 100

# Hard ceiling on a single page visit, including scrolling (seconds)
DEFAULT_VISIT_TIMEOUT_SECONDS = 120.0


# =============================================================================
# Page Visit Constants
# =============================================================================

# Navigation timeout passed to the browser (milliseconds)
DEFAULT_NAVIGATION_TIMEOUT_MS = 30000

# Auto-scroll limits
DEFAULT_MAX_SCROLLS = 10
SCROLL_PAUSE_SECONDS = 0.25

# Captured API-like responses per page
DEFAULT_MAX_API_RESPONSES = 50

# Path fragments that mark a JSON response as API traffic
API_PATH_MARKERS = ('/api/', '/graphql')

# Elements harvested for outgoing links
DEFAULT_LINK_SELECTOR = 'a[href]'

# Extracted body text cap (characters)
MAX_BODY_TEXT_LENGTH = 10000

# Prompt truncation for the text-generation service (characters)
ANALYSIS_CONTENT_LIMIT = 3000
ANALYSIS_SHORT_CONTENT_LIMIT = 2000


# =============================================================================
# Viewport Constants
# =============================================================================

DESKTOP_VIEWPORT_WIDTH = 1920
DESKTOP_VIEWPORT_HEIGHT = 1080
