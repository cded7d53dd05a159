"""Parallel feed fetching with ``aiohttp``.

Fetches several independent feeds concurrently.  Each feed either
produces a ``FetchResult`` or its own ``FetchError``/``DecompressError``;
one failing feed never affects the others.

Usage from synchronous code::

    from vulndelta.async_client import fetch_all_parallel
    results = fetch_all_parallel({"recent": RECENT_URL, "modified": MODIFIED_URL})
"""

from __future__ import annotations

import asyncio
import logging
import os

import aiohttp

from .client import DEFAULT_HTTP_TIMEOUT, USER_AGENT, FetchResult, decompress
from .errors import CheckError, DecompressError, FetchError
from .hashing import content_hash

logger = logging.getLogger(__name__)


def _headers(user_agent: str = USER_AGENT) -> dict[str, str]:
    """Build HTTP headers including an optional NVD API key."""
    headers = {
        "User-Agent": user_agent,
        "Accept": "*/*",
    }
    api_key = os.environ.get("NVD_API_KEY")
    if api_key:
        headers["apiKey"] = api_key
    return headers


def _client_timeout(timeout: tuple[float, float]) -> aiohttp.ClientTimeout:
    connect, read = timeout
    return aiohttp.ClientTimeout(total=connect + read, connect=connect, sock_read=read)


async def _fetch_bytes(session: aiohttp.ClientSession, url: str) -> bytes:
    """Download raw bytes from a URL."""
    async with session.get(url) as resp:
        resp.raise_for_status()
        return await resp.read()


async def _fetch_feed(session: aiohttp.ClientSession, feed_id: str, url: str) -> FetchResult:
    """Async counterpart of ``FeedClient.fetch``."""
    try:
        raw = await _fetch_bytes(session, url)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise FetchError(f"GET {url} failed: {e!r}", feed_id=feed_id) from e

    payload = await asyncio.to_thread(decompress, raw, feed_id=feed_id)
    digest = content_hash(payload)
    logger.info("Fetched feed %s: %d bytes (%d decompressed), hash %s", feed_id, len(raw), len(payload), digest)
    return FetchResult(feed_id=feed_id, url=url, payload=payload, content_hash=digest)


async def _fetch_all(
    feeds: dict[str, str],
    timeout: tuple[float, float],
    session: aiohttp.ClientSession | None = None,
) -> dict[str, FetchResult | CheckError]:
    """Fetch every feed concurrently.

    Args:
        feeds: Mapping of feed id to URL.
        timeout: ``(connect, read)`` timeout in seconds.
        session: Optional session to reuse instead of creating one.

    Returns:
        Mapping of feed id to its result or its error, in ``feeds`` order.
    """
    if session is None:
        async with aiohttp.ClientSession(headers=_headers(), timeout=_client_timeout(timeout)) as own:
            return await _fetch_all(feeds, timeout, own)

    tasks = {feed_id: asyncio.create_task(_fetch_feed(session, feed_id, url)) for feed_id, url in feeds.items()}
    out: dict[str, FetchResult | CheckError] = {}
    for feed_id, task in tasks.items():
        try:
            out[feed_id] = await task
        except (FetchError, DecompressError) as e:
            logger.warning("Fetch failed for feed %s: %s", feed_id, e)
            out[feed_id] = e
    return out


def fetch_all_parallel(
    feeds: dict[str, str],
    timeout: tuple[float, float] = DEFAULT_HTTP_TIMEOUT,
) -> dict[str, FetchResult | CheckError]:
    """Synchronous wrapper that fetches all feeds in parallel via asyncio.

    Args:
        feeds: Mapping of feed id to URL.
        timeout: ``(connect, read)`` timeout in seconds.

    Returns:
        Mapping of feed id to ``FetchResult`` or the ``CheckError`` that
        ended that feed's fetch.

    Example::

        results = fetch_all_parallel({"recent": NVD_RECENT_URL})
        if isinstance(results["recent"], FetchResult):
            print(results["recent"].content_hash)
    """
    return asyncio.run(_fetch_all(feeds, timeout))
