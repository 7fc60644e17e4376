from dotenv import load_dotenv
from typing import Literal, Optional
from urllib.parse import urlsplit
import os

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scrapture.constants import (
    DEFAULT_LINK_SELECTOR,
    DEFAULT_MAX_API_RESPONSES,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_SCROLLS,
    DEFAULT_MAX_SITEMAP_DEPTH,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_REQUEST_DELAY_MS,
    DEFAULT_ROBOTS_USER_AGENT,
    DEFAULT_VISIT_TIMEOUT_SECONDS,
)

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///scrapture.db")  # Default to SQLite
    USER_AGENT = os.getenv("USER_AGENT", "Scrapture-Bot/1.0")
    SCREENSHOT_DIR = os.getenv("SCREENSHOT_DIR", "screenshots")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Text-generation service (Ollama-compatible)
    OLLAMA_API_URL = os.getenv("OLLAMA_API_URL", "http://localhost:11434")
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama2")


settings = Settings()


class SessionConfig(BaseModel):
    """
    Every option a crawl session recognizes, with its default.

    Validated once when the session is created; unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    seed_url: str = Field(
        description="URL the crawl starts from"
    )

    max_depth: int = Field(
        default=DEFAULT_MAX_DEPTH,
        ge=0,
        description="Deepest link distance from the seed that will be visited"
    )

    max_pages: int = Field(
        default=DEFAULT_MAX_PAGES,
        ge=1,
        description="Page visits allowed for the whole session"
    )

    same_domain_only: bool = Field(
        default=True,
        description="Only admit URLs whose host matches the seed"
    )

    include_subdomains: bool = Field(
        default=False,
        description="Treat hosts sharing the last two DNS labels as the same domain"
    )

    follow_sitemap: bool = Field(
        default=True,
        description="Discover sitemaps and seed the frontier from them"
    )

    respect_robots: bool = Field(
        default=True,
        description="Fetch robots.txt and skip disallowed URLs"
    )

    capture_screenshot: bool = Field(
        default=True,
        description="Save a full-page screenshot of each visited page"
    )

    capture_api_responses: bool = Field(
        default=True,
        description="Record JSON responses from API-like endpoints during page load"
    )

    auto_scroll: bool = Field(
        default=True,
        description="Scroll the page to trigger lazy-loaded content"
    )

    max_scrolls: int = Field(
        default=DEFAULT_MAX_SCROLLS,
        ge=0,
        description="Upper bound on scroll steps per page"
    )

    request_delay_ms: int = Field(
        default=DEFAULT_REQUEST_DELAY_MS,
        ge=0,
        description="Minimum delay between requests to one origin when robots.txt sets none"
    )

    navigation_timeout_ms: int = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS,
        ge=1000,
        le=300000,
        description="Page load timeout in milliseconds"
    )

    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="networkidle",
        description="When to consider navigation complete"
    )

    wait_for_selector: Optional[str] = Field(
        default=None,
        description="CSS selector that must appear before the page is read"
    )

    link_selector: str = Field(
        default=DEFAULT_LINK_SELECTOR,
        min_length=1,
        description="CSS selector whose matches are harvested as links"
    )

    visit_timeout_seconds: float = Field(
        default=DEFAULT_VISIT_TIMEOUT_SECONDS,
        gt=0,
        description="Ceiling on a whole page visit including scrolling and extraction"
    )

    max_api_responses: int = Field(
        default=DEFAULT_MAX_API_RESPONSES,
        ge=0,
        description="Captured API responses kept per page"
    )

    max_sitemap_depth: int = Field(
        default=DEFAULT_MAX_SITEMAP_DEPTH,
        ge=0,
        description="Nesting limit when expanding sitemap indexes"
    )

    robots_user_agent: str = Field(
        default=DEFAULT_ROBOTS_USER_AGENT,
        description="Agent token matched against robots.txt User-agent groups"
    )

    user_agent: Optional[str] = Field(
        default=None,
        description="Browser and fetch User-Agent header. None uses settings.USER_AGENT."
    )

    screenshot_dir: str = Field(
        default_factory=lambda: settings.SCREENSHOT_DIR,
        description="Directory screenshots are written to"
    )

    classify_pages: bool = Field(
        default=False,
        description="Ask the text-generation service to classify each page"
    )

    @field_validator("seed_url")
    @classmethod
    def _check_seed_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlsplit(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"seed_url must be an absolute http(s) URL, got {value!r}")
        parsed.port  # raises ValueError for a malformed or out-of-range port
        return value

    def get_user_agent(self) -> str:
        return self.user_agent or settings.USER_AGENT
