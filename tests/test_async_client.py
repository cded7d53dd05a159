"""Unit tests for vulndelta.async_client — parallel feed fetching."""

import asyncio
import gzip
import os
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from vulndelta.async_client import _client_timeout, _fetch_all, _fetch_feed, _headers, fetch_all_parallel
from vulndelta.client import FetchResult
from vulndelta.errors import DecompressError, FetchError
from vulndelta.hashing import content_hash

# ── Helper for async context manager mocking ────────────────────────────────


class AsyncContextManager:
    """Wraps an async mock to support `async with session.get(url) as resp:`."""

    def __init__(self, mock_resp):
        self.mock_resp = mock_resp

    async def __aenter__(self):
        return self.mock_resp

    async def __aexit__(self, *args):
        pass


def _response(body: bytes = b"", error: Exception | None = None) -> AsyncMock:
    resp = AsyncMock()
    resp.read = AsyncMock(return_value=body)
    resp.raise_for_status = MagicMock(side_effect=error)
    return resp


# ── _headers / _client_timeout ───────────────────────────────────────────────


class TestHeaders:
    def test_default(self):
        with patch.dict(os.environ, {}, clear=True):
            headers = _headers()
        assert "VulnDelta" in headers["User-Agent"]
        assert "apiKey" not in headers

    @patch.dict(os.environ, {"NVD_API_KEY": "k"})
    def test_api_key(self):
        assert _headers()["apiKey"] == "k"


class TestClientTimeout:
    def test_split(self):
        t = _client_timeout((10, 120))
        assert t.connect == 10
        assert t.sock_read == 120
        assert t.total == 130


# ── _fetch_feed ──────────────────────────────────────────────────────────────


class TestFetchFeed:
    def test_success(self):
        session = MagicMock()
        session.get = MagicMock(return_value=AsyncContextManager(_response(gzip.compress(b'{"a":1}'))))

        result = asyncio.run(_fetch_feed(session, "recent", "https://feeds/recent"))
        assert isinstance(result, FetchResult)
        assert result.payload == b'{"a":1}'
        assert result.content_hash == content_hash(b'{"a":1}')

    def test_http_error(self):
        error = aiohttp.ClientResponseError(MagicMock(), (), status=503, message="Service Unavailable")
        session = MagicMock()
        session.get = MagicMock(return_value=AsyncContextManager(_response(error=error)))

        with pytest.raises(FetchError) as exc:
            asyncio.run(_fetch_feed(session, "recent", "https://feeds/recent"))
        assert exc.value.feed_id == "recent"

    def test_timeout(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=asyncio.TimeoutError())
        with pytest.raises(FetchError):
            asyncio.run(_fetch_feed(session, "recent", "https://feeds/recent"))

    def test_decompresses_off_event_loop(self):
        threads: list[threading.Thread] = []

        def fake_decompress(raw, *, feed_id=None):
            threads.append(threading.current_thread())
            return b"{}"

        session = MagicMock()
        session.get = MagicMock(return_value=AsyncContextManager(_response(b"gz")))
        with patch("vulndelta.async_client.decompress", side_effect=fake_decompress):
            result = asyncio.run(_fetch_feed(session, "recent", "https://feeds/recent"))

        assert result.payload == b"{}"
        assert len(threads) == 1
        assert threads[0] is not threading.main_thread()

    def test_bad_gzip(self):
        session = MagicMock()
        session.get = MagicMock(return_value=AsyncContextManager(_response(b"not gzip")))
        with pytest.raises(DecompressError):
            asyncio.run(_fetch_feed(session, "recent", "https://feeds/recent"))


# ── _fetch_all / fetch_all_parallel ──────────────────────────────────────────


class TestFetchAll:
    def test_one_failure_does_not_affect_others(self):
        def get(url):
            if "modified" in url:
                return AsyncContextManager(_response(b"garbage"))
            return AsyncContextManager(_response(gzip.compress(b"{}")))

        session = MagicMock()
        session.get = MagicMock(side_effect=get)

        feeds = {"recent": "https://feeds/recent", "modified": "https://feeds/modified"}
        out = asyncio.run(_fetch_all(feeds, (1, 1), session))
        assert list(out) == ["recent", "modified"]
        assert isinstance(out["recent"], FetchResult)
        assert isinstance(out["modified"], DecompressError)
        assert out["modified"].feed_id == "modified"

    def test_sync_wrapper(self):
        fake = {"recent": FetchError("boom", feed_id="recent")}
        with patch("vulndelta.async_client._fetch_all", new=AsyncMock(return_value=fake)) as inner:
            out = fetch_all_parallel({"recent": "u"}, timeout=(2, 3))
        assert out == fake
        inner.assert_awaited_once_with({"recent": "u"}, (2, 3))
