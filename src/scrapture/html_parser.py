"""
HTML extraction helpers.

Pulls the pieces of a rendered page the crawler stores:
- Title, description and keywords
- Headings, links and images
- Visible body text
- JSON-LD blocks
- Document metadata (canonical, Open Graph, authorship, robots)
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from scrapture.constants import MAX_BODY_TEXT_LENGTH

logger = logging.getLogger(__name__)


@dataclass
class ParsedHTML:
    """Content extracted from one HTML document."""

    title: str = ""
    meta_description: str = ""
    meta_keywords: str = ""
    headings: Dict[str, List[str]] = field(default_factory=lambda: {'h1': [], 'h2': [], 'h3': []})
    links: List[Dict[str, Optional[str]]] = field(default_factory=list)
    images: List[Dict[str, str]] = field(default_factory=list)
    body_text: str = ""
    word_count: int = 0


def _meta_content(soup: BeautifulSoup, **attrs) -> Optional[str]:
    tag = soup.find('meta', attrs=attrs)
    if tag and tag.get('content'):
        return tag['content'].strip()
    return None


def parse_html(html: str, base_url: Optional[str] = None) -> ParsedHTML:
    """
    Parse a rendered page.

    Args:
        html: Page HTML
        base_url: If given, link and image URLs are resolved against it

    Returns:
        ParsedHTML; body text is capped, word count is not
    """
    soup = BeautifulSoup(html, 'html.parser')

    title_tag = soup.find('title')
    h1 = soup.find('h1')
    title = (
        (title_tag.get_text(strip=True) if title_tag else '')
        or _meta_content(soup, property='og:title')
        or (h1.get_text(strip=True) if h1 else '')
        or ''
    )

    description = (
        _meta_content(soup, name='description')
        or _meta_content(soup, property='og:description')
        or ''
    )

    headings = {
        level: [h.get_text(strip=True) for h in soup.find_all(level)]
        for level in ('h1', 'h2', 'h3')
    }

    links = []
    for a in soup.find_all('a', href=True):
        href = a['href'].strip()
        rel = a.get('rel')
        links.append({
            'href': urljoin(base_url, href) if base_url else href,
            'text': a.get_text(strip=True),
            'rel': ' '.join(rel) if isinstance(rel, list) else rel,
        })

    images = []
    for img in soup.find_all('img', src=True):
        src = img['src'].strip()
        images.append({
            'src': urljoin(base_url, src) if base_url else src,
            'alt': img.get('alt', ''),
        })

    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()

    body = soup.body or soup
    body_text = re.sub(r'\s+', ' ', body.get_text(' ')).strip()

    return ParsedHTML(
        title=title,
        meta_description=description,
        meta_keywords=_meta_content(soup, name='keywords') or '',
        headings=headings,
        links=links,
        images=images,
        body_text=body_text[:MAX_BODY_TEXT_LENGTH],
        word_count=len(body_text.split()),
    )


def extract_structured_data(html: str) -> List[Any]:
    """Return every JSON-LD block on the page; invalid JSON is skipped."""
    soup = BeautifulSoup(html, 'html.parser')
    blocks = []

    for script in soup.find_all('script', type='application/ld+json'):
        content = script.string
        if not content or not content.strip():
            continue
        try:
            blocks.append(json.loads(content))
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping invalid JSON-LD block: {e}")

    return blocks


def extract_metadata(html: str) -> Dict[str, str]:
    """
    Extract document-level metadata.

    Returns:
        Dict with any of: canonical, og_type, og_image, og_url, author,
        publish_date, modified_date, language, robots. Absent values are
        omitted.
    """
    soup = BeautifulSoup(html, 'html.parser')

    canonical = soup.find('link', rel='canonical')
    time_tag = soup.find('time', attrs={'datetime': True})
    html_tag = soup.find('html')

    metadata = {
        'canonical': canonical.get('href') if canonical else None,
        'og_type': _meta_content(soup, property='og:type'),
        'og_image': _meta_content(soup, property='og:image'),
        'og_url': _meta_content(soup, property='og:url'),
        'author': (
            _meta_content(soup, name='author')
            or _meta_content(soup, property='article:author')
        ),
        'publish_date': (
            _meta_content(soup, property='article:published_time')
            or (time_tag['datetime'] if time_tag else None)
        ),
        'modified_date': _meta_content(soup, property='article:modified_time'),
        'language': (
            (html_tag.get('lang') if html_tag else None)
            or _meta_content(soup, **{'http-equiv': 'content-language'})
        ),
        'robots': _meta_content(soup, name='robots'),
    }

    return {key: value for key, value in metadata.items() if value}
