"""Shared httpx client handling for policy fetches (robots.txt, sitemaps)."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from scrapture.config import settings
from scrapture.constants import POLICY_FETCH_TIMEOUT_SECONDS


def build_client(
    user_agent: Optional[str] = None,
    timeout: float = POLICY_FETCH_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    """Create the AsyncClient a session uses for non-browser fetches."""
    headers = {
        "User-Agent": user_agent or settings.USER_AGENT,
        "Accept": "text/plain,application/xml,text/xml,*/*",
    }
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True, headers=headers)


@asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient] = None,
    user_agent: Optional[str] = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the caller's client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return

    async with build_client(user_agent) as owned:
        yield owned
