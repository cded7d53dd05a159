"""HTTP feed client.

Fetches one gzip-compressed feed snapshot and returns the decompressed
bytes together with their content hash.  All network I/O for the
synchronous path is isolated here; nothing is written locally.
"""

import gzip
import io
import logging
import os
import zlib
from dataclasses import dataclass

import requests

from .errors import DecompressError, FetchError
from .hashing import content_hash

logger = logging.getLogger(__name__)

NVD_FEED_BASE_URL = "https://nvd.nist.gov/feeds/json/cve/2.0"
NVD_RECENT_URL = f"{NVD_FEED_BASE_URL}/nvdcve-2.0-recent.json.gz"
NVD_MODIFIED_URL = f"{NVD_FEED_BASE_URL}/nvdcve-2.0-modified.json.gz"

DEFAULT_HTTP_TIMEOUT = (10, 120)  # (connect, read)
USER_AGENT = "VulnDelta/0.1 (+https://github.com/)"


@dataclass(frozen=True)
class FetchResult:
    """Decompressed payload of one feed fetch.

    Attributes:
        feed_id: Logical feed name (``recent``, ``modified``).
        url: URL the payload came from.
        payload: Decompressed bytes.
        content_hash: Uppercase SHA-256 hex of ``payload``.
    """

    feed_id: str
    url: str
    payload: bytes
    content_hash: str


def requests_session(user_agent: str = USER_AGENT) -> requests.Session:
    """Create a configured requests session.

    Picks up an ``NVD_API_KEY`` from the environment if one is set.

    Returns:
        Configured ``requests.Session``.
    """
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": user_agent,
            "Accept": "*/*",
        }
    )
    api_key = os.environ.get("NVD_API_KEY")
    if api_key:
        s.headers["apiKey"] = api_key
    return s


def decompress(raw: bytes, *, feed_id: str | None = None) -> bytes:
    """Gunzip a payload.

    Raises:
        DecompressError: if ``raw`` is not a complete gzip stream.
    """
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(raw), mode="rb") as gz:
            return gz.read()
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressError(f"payload is not valid gzip: {e}", feed_id=feed_id) from e


def download_bytes(
    session: requests.Session,
    url: str,
    timeout: tuple[float, float] = DEFAULT_HTTP_TIMEOUT,
) -> bytes:
    """Download raw bytes from a URL.

    Args:
        session: Requests session.
        url: URL to fetch.
        timeout: ``(connect, read)`` timeout in seconds.

    Returns:
        Raw bytes of the response body.
    """
    with session.get(url, stream=True, timeout=timeout) as r:
        r.raise_for_status()
        buf = io.BytesIO()
        for chunk in r.iter_content(chunk_size=1024 * 1024):
            if chunk:
                buf.write(chunk)
        return buf.getvalue()


class FeedClient:
    """Fetches feed snapshots over HTTP.

    Args:
        feeds: Mapping of feed id to URL.
        session: Optional pre-built session (tests inject a mock).
        timeout: ``(connect, read)`` timeout applied to every request.
    """

    def __init__(
        self,
        feeds: dict[str, str],
        session: requests.Session | None = None,
        timeout: tuple[float, float] = DEFAULT_HTTP_TIMEOUT,
    ):
        self.feeds = dict(feeds)
        self.session = session or requests_session()
        self.timeout = timeout

    def url_for(self, feed_id: str) -> str:
        try:
            return self.feeds[feed_id]
        except KeyError:
            raise FetchError(f"no URL configured for feed {feed_id!r}", feed_id=feed_id) from None

    def fetch(self, feed_id: str) -> FetchResult:
        """Fetch and decompress one feed snapshot.

        Args:
            feed_id: Configured feed name.

        Returns:
            ``FetchResult`` with the decompressed bytes and their hash.

        Raises:
            FetchError: on transport, HTTP status or timeout failure.
            DecompressError: if the body is not valid gzip.
        """
        url = self.url_for(feed_id)
        logger.debug("Fetching feed %s from %s", feed_id, url)
        try:
            raw = download_bytes(self.session, url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"GET {url} failed: {e}", feed_id=feed_id) from e

        payload = decompress(raw, feed_id=feed_id)
        digest = content_hash(payload)
        logger.info("Fetched feed %s: %d bytes (%d decompressed), hash %s", feed_id, len(raw), len(payload), digest)
        return FetchResult(feed_id=feed_id, url=url, payload=payload, content_hash=digest)
