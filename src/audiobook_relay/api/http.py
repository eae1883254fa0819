"""Shared upstream GET helpers.

Every call carries an explicit timeout and runs exactly once. Transport
errors, timeouts, non-2xx statuses, and undecodable JSON all surface as
SourceUnavailable so callers have a single thing to recover from.
"""

from typing import Any

import httpx
from loguru import logger

from ..errors import SourceUnavailable

log = logger.bind(stage="http")

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
FEED_ACCEPT = "application/rss+xml,application/xml,text/xml;q=0.9,text/html;q=0.8,*/*;q=0.7"


def build_client(
    user_agent: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the AsyncClient shared by all source clients."""
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent},
        follow_redirects=True,
        transport=transport,
    )


async def fetch_response(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    timeout: float,
    params: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """GET ``url`` once, raising SourceUnavailable on any failure."""
    log.debug(f"{source}: GET {url} params={params}")
    try:
        resp = await client.get(url, params=params, headers=headers, timeout=timeout)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise SourceUnavailable(source, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise SourceUnavailable(source, f"{type(e).__name__}: {e}") from e
    return resp


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    timeout: float,
    params: dict[str, str] | None = None,
) -> Any:
    """GET ``url`` and decode the JSON body."""
    resp = await fetch_response(client, url, source=source, timeout=timeout, params=params)
    try:
        return resp.json()
    except ValueError as e:
        raise SourceUnavailable(source, f"invalid JSON body: {e}") from e


async def fetch_text(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    timeout: float,
    accept: str = HTML_ACCEPT,
) -> str:
    """GET ``url`` and return the decoded text body."""
    resp = await fetch_response(
        client, url, source=source, timeout=timeout, headers={"Accept": accept},
    )
    return resp.text
