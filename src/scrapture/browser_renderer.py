"""
Browser renderer using Playwright for JavaScript-rendered content.

This module provides a BrowserRenderer that owns one browser process for a
crawl session and hands out pages, each in its own isolated context, so
cookies and localStorage never leak between visits.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .browser_config import BrowserConfig

logger = logging.getLogger(__name__)


class BrowserRenderer:
    """
    Manages a Playwright browser for page rendering.

    This class is designed to be used as an async context manager, managing
    the browser lifecycle automatically:

        async with BrowserRenderer(config) as renderer:
            async with renderer.new_page() as page:
                await page.goto("https://example.com")
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        """
        Initialize the renderer.

        Args:
            config: BrowserConfig instance with browser settings
        """
        self._config = config or BrowserConfig()
        self._playwright = None
        self._browser = None

        logger.debug(f"BrowserRenderer initialized with config: {self._config}")

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def __aenter__(self) -> "BrowserRenderer":
        """Enter async context manager, launching browser."""
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager, closing browser."""
        await self.close()

    async def launch(self) -> None:
        try:
            from playwright.async_api import async_playwright
        except ImportError:
            raise ImportError(
                "Playwright is required for rendering. "
                "Install with: pip install playwright && playwright install chromium"
            )

        logger.info(f"Launching {self._config.browser_type} browser (headless={self._config.headless})")

        self._playwright = await async_playwright().start()
        try:
            browser_launcher = getattr(self._playwright, self._config.browser_type)

            launch_options = {"headless": self._config.headless}
            if self._config.launch_args:
                launch_options["args"] = self._config.launch_args

            self._browser = await browser_launcher.launch(**launch_options)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

        logger.info("Browser launched successfully")

    async def close(self) -> None:
        if self._browser:
            logger.info("Closing browser")
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    @asynccontextmanager
    async def new_page(self) -> AsyncIterator:
        """
        Open a page in a fresh, isolated browser context.

        The context (and with it the page) is closed on every exit path.

        Raises:
            RuntimeError: If the browser is not running
        """
        if not self._browser:
            raise RuntimeError(
                "Browser is not running. Use BrowserRenderer as an async context manager: "
                "async with BrowserRenderer(config) as renderer:"
            )

        context = await self._browser.new_context(
            viewport=self._config.viewport(),
            user_agent=self._config.get_user_agent(),
            locale=self._config.locale,
            java_script_enabled=True,
            ignore_https_errors=self._config.ignore_https_errors,
        )

        try:
            page = await context.new_page()
            yield page
        finally:
            # Always close context to ensure isolation
            await context.close()
