"""Shared fixtures: an in-memory store and a scripted browser."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from scrapture.database import SqliteCrawlStore
from scrapture.page_crawler import SCROLL_STATE_SCRIPT, SCROLL_STEP_SCRIPT, SPA_URLS_SCRIPT


@dataclass
class FakeRequest:
    method: str = "GET"


@dataclass
class FakeResponse:
    """Stand-in for a Playwright network response."""

    url: str
    body: Any = None
    status: int = 200
    headers: Dict[str, str] = field(default_factory=lambda: {"content-type": "application/json"})
    request: FakeRequest = field(default_factory=FakeRequest)

    async def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


@dataclass
class PageFixture:
    """What the fake browser renders for one URL."""

    html: str
    links: List[str] = field(default_factory=list)
    spa_urls: List[str] = field(default_factory=list)
    responses: List[FakeResponse] = field(default_factory=list)
    final_url: Optional[str] = None
    error: Optional[Exception] = None
    harvest_error: Optional[Exception] = None
    delay: float = 0.0


class FakeSite:
    """URL -> PageFixture map plus a record of what was visited."""

    def __init__(self, pages: Optional[Dict[str, PageFixture]] = None):
        self.pages = pages or {}
        self.visited: List[str] = []
        self.navigation_started = asyncio.Event()

    def add(self, url: str, html: Optional[str] = None, **kwargs) -> None:
        self.pages[url] = PageFixture(html=html or f"<html><body><h1>{url}</h1></body></html>", **kwargs)


class FakePage:
    """Implements the subset of the Playwright Page API the crawler uses."""

    def __init__(self, site: FakeSite):
        self.site = site
        self.url = "about:blank"
        self.init_scripts: List[str] = []
        self.listeners: Dict[str, List[Any]] = {}
        self.scroll_steps = 0
        self.waited_selectors: List[str] = []
        self.link_selectors: List[str] = []
        self.screenshots: List[str] = []
        self._current: Optional[PageFixture] = None

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    def on(self, event: str, handler) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.listeners.get(event, []).remove(handler)

    async def goto(self, url: str, wait_until: str = "load", timeout: int = 30000):
        self.site.visited.append(url)
        self.site.navigation_started.set()

        fixture = self.site.pages.get(url)
        if fixture is None:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        if fixture.delay:
            await asyncio.sleep(fixture.delay)
        if fixture.error:
            raise fixture.error

        self._current = fixture
        self.url = fixture.final_url or url
        for response in fixture.responses:
            for handler in list(self.listeners.get("response", [])):
                handler(response)
        return None

    async def evaluate(self, script: str):
        if script == SPA_URLS_SCRIPT:
            return list(self._current.spa_urls)
        if script == SCROLL_STEP_SCRIPT:
            self.scroll_steps += 1
            return None
        if script == SCROLL_STATE_SCRIPT:
            return {"height": 1000, "atBottom": self.scroll_steps > 0}
        raise AssertionError(f"Unexpected script: {script!r}")

    async def wait_for_selector(self, selector: str, timeout: int = 30000):
        self.waited_selectors.append(selector)

    async def eval_on_selector_all(self, selector: str, script: str):
        self.link_selectors.append(selector)
        if self._current.harvest_error:
            raise self._current.harvest_error
        return list(self._current.links)

    async def content(self) -> str:
        return self._current.html

    async def screenshot(self, path: str, full_page: bool = False) -> bytes:
        Path(path).write_bytes(b"\x89PNG")
        self.screenshots.append(path)
        return b"\x89PNG"


class FakeRenderer:
    """Async-context-managed renderer handing out FakePages."""

    def __init__(self, site: FakeSite, launch_error: Optional[Exception] = None):
        self.site = site
        self.launch_error = launch_error
        self.launched = False
        self.closed = False
        self.open_contexts = 0
        self.pages: List[FakePage] = []

    async def __aenter__(self):
        if self.launch_error:
            raise self.launch_error
        self.launched = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    @asynccontextmanager
    async def new_page(self):
        self.open_contexts += 1
        page = FakePage(self.site)
        self.pages.append(page)
        try:
            yield page
        finally:
            self.open_contexts -= 1


@pytest.fixture
def store():
    """In-memory crawl store."""
    db = SqliteCrawlStore(":memory:")
    yield db
    db.close()


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def renderer(site):
    return FakeRenderer(site)
