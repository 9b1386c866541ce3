from __future__ import annotations

import asyncio
import logging
from typing import Protocol
from urllib.parse import urlparse

import aiohttp

from toolrun.errors import FetchError
from toolrun.models import FetchedInput

log = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_S = 30
DEFAULT_FETCH_MAX_BYTES = 25_000_000
CHUNK_BYTES = 64 * 1024


class ByteSource(Protocol):
    async def fetch(self, url: str) -> FetchedInput:
        ...


class HttpByteSource:
    """Downloads inputs over http(s) with a shared aiohttp session."""

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
        max_bytes: int = DEFAULT_FETCH_MAX_BYTES,
    ) -> None:
        self._timeout_s = timeout_s
        self._max_bytes = max_bytes
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, url: str) -> FetchedInput:
        scheme = (urlparse(url).scheme or "").lower()
        if scheme not in {"http", "https"}:
            raise FetchError(url, "only http(s) links are supported")

        session = await self._get_session()
        try:
            async with session.get(url) as resp:
                if resp.status >= 400:
                    raise FetchError(url, f"HTTP {resp.status}", status=resp.status)
                content_type = (resp.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()

                length = resp.headers.get("Content-Length")
                if length and length.isdigit() and int(length) > self._max_bytes:
                    raise FetchError(url, f"file exceeds {self._max_bytes:,} bytes")

                buf = bytearray()
                async for chunk in resp.content.iter_chunked(CHUNK_BYTES):
                    buf.extend(chunk)
                    if len(buf) > self._max_bytes:
                        raise FetchError(url, f"file exceeds {self._max_bytes:,} bytes")
        except FetchError as e:
            log.info("Fetch of %s failed: %s", url, e.reason)
            raise
        except asyncio.TimeoutError as e:
            log.info("Fetch of %s timed out after %ss", url, self._timeout_s)
            raise FetchError(url, "download timed out") from e
        except aiohttp.ClientError as e:
            log.info("Fetch of %s failed: %s", url, e)
            raise FetchError(url, str(e) or type(e).__name__) from e

        return FetchedInput(content_type=content_type or None, data=bytes(buf))
