from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from types import TracebackType
from typing import Mapping, Protocol, Self
from urllib.parse import quote

import aiohttp
import backoff
import structlog
from aiohttp import ClientTimeout

from .config import TwittuhConfig
from .errors import FetchError

logger = structlog.get_logger()

# Longest file name most filesystems accept, in bytes.
MAX_NAME_BYTES = 255


class Fetcher(Protocol):
    """Source of page bodies for the parser and timeline pager."""

    async def fetch(
        self,
        url: str,
        use_cache: bool = True,
        form: Mapping[str, str] | None = None,
    ) -> bytes: ...


def request_headers(user_agent: str) -> dict[str, str]:
    """Headers resembling what the browser named by user_agent would send."""
    if "Chrome/" in user_agent:
        headers = {
            "Connection": "keep-alive",
            "DNT": "1",
            "Upgrade-Insecure-Requests": "1",
            "Accept": (
                "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,"
                "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.9"
            ),
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-User": "?1",
            "Sec-Fetch-Dest": "document",
            "Accept-Language": "en-US,en;q=0.9",
        }
    elif user_agent.startswith("w3m/"):
        headers = {
            "Accept": (
                "text/html, text/*;q=0.5, image/*, application/*, audio/*, "
                "x-scheme-handler/*, inode/*"
            ),
            "Accept-Language": "en;q=1.0",
        }
    elif user_agent.startswith("Lynx/"):
        headers = {
            "Accept": "text/html, text/plain, text/sgml, text/css, */*;q=0.01",
            "Accept-Language": "en",
        }
    else:
        headers = {}

    if user_agent:
        headers["User-Agent"] = user_agent
    return headers


class PageFetcher:
    """Downloads pages over HTTP, optionally caching them on disk.

    Use as an async context manager so that one client session is shared by
    every request made during a run.
    """

    def __init__(self, config: TwittuhConfig) -> None:
        self.config = config
        self.cache_dir = config.cache_dir
        self.timeout = ClientTimeout(total=config.request_timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> Self:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._session = aiohttp.ClientSession(
            headers=request_headers(self.config.user_agent), timeout=self.timeout
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def cache_path(self, url: str) -> Path:
        """Cache file for url; names too long to store are replaced by a digest."""
        name = quote(url, safe="")
        if len(name.encode()) > MAX_NAME_BYTES:
            name = hashlib.sha256(url.encode()).hexdigest()
        return self.cache_dir / name

    async def fetch(
        self,
        url: str,
        use_cache: bool = True,
        form: Mapping[str, str] | None = None,
    ) -> bytes:
        """Return the body at url.

        With use_cache, a cached copy is returned if present and a downloaded
        body is cached. Offline fetchers only ever read the cache.
        """
        path = self.cache_path(url)
        if use_cache or self.config.offline:
            try:
                body = path.read_bytes()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise FetchError(f"couldn't read cached {url}: {e}") from e
            else:
                logger.debug("cache_hit", url=url)
                return body
            if self.config.offline:
                raise FetchError(f"not using network but {path} doesn't exist")

        body = await self._request(url, form)
        if use_cache:
            try:
                path.write_bytes(body)
            except OSError as e:
                path.unlink(missing_ok=True)
                raise FetchError(f"couldn't cache {url}: {e}") from e
        return body

    async def _request(self, url: str, form: Mapping[str, str] | None) -> bytes:
        if self._session is None:
            raise RuntimeError("PageFetcher must be used as an async context manager")
        try:
            retrying = backoff.on_exception(
                backoff.expo,
                (aiohttp.ClientError, asyncio.TimeoutError),
                max_tries=self.config.max_retries,
                logger=logger,
            )(self._make_request)
            return await retrying(self._session, url, form)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"couldn't fetch {url}: {e}") from e

    async def _make_request(
        self,
        session: aiohttp.ClientSession,
        url: str,
        form: Mapping[str, str] | None = None,
    ) -> bytes:
        """Make a single GET, or POST when form is supplied."""
        logger.debug("fetching", url=url, method="POST" if form else "GET")
        if form is not None:
            request = session.post(url, data=dict(form))
        else:
            request = session.get(url)

        async with request as response:
            match response.status:
                case 200:
                    return await response.read()
                case _:
                    raise FetchError(
                        f"server returned {response.reason!r} for {url}",
                        response.status,
                    )
