"""
Browser configuration for Playwright-based rendering.

This module provides a validated Pydantic configuration model for the
browser a crawl session launches, plus a container-friendly preset.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from scrapture.config import settings
from scrapture.constants import DESKTOP_VIEWPORT_HEIGHT, DESKTOP_VIEWPORT_WIDTH


class BrowserConfig(BaseModel):
    """
    Configuration for the Playwright-based BrowserRenderer.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    model_config = ConfigDict(validate_assignment=True)

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use for rendering"
    )

    user_agent: Optional[str] = Field(
        default=None,
        description="User agent for every context. None uses settings.USER_AGENT."
    )

    viewport_width: int = Field(
        default=DESKTOP_VIEWPORT_WIDTH,
        ge=320,
        description="Viewport width in CSS pixels"
    )

    viewport_height: int = Field(
        default=DESKTOP_VIEWPORT_HEIGHT,
        ge=240,
        description="Viewport height in CSS pixels"
    )

    locale: str = Field(
        default="en-US",
        description="Locale reported by each context"
    )

    launch_args: List[str] = Field(
        default_factory=list,
        description="Additional browser launch arguments (e.g., '--disable-http2')"
    )

    ignore_https_errors: bool = Field(
        default=False,
        description="Accept invalid TLS certificates"
    )

    def get_user_agent(self) -> str:
        """Get the user agent to use for this config."""
        return self.user_agent or settings.USER_AGENT

    def viewport(self) -> Dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}


# --- Pre-configured Instances for Common Use Cases ---

CONTAINER_CONFIG = BrowserConfig(
    headless=True,
    launch_args=[
        "--no-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ],
)
"""
Configuration for running inside containers.

Disables the sandbox and /dev/shm usage, which commonly fail in Docker.
"""
