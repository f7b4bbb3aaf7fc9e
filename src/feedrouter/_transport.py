"""HTTP source reader for the upstream CSV export."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol
from urllib.parse import urlencode

import aiohttp

from feedrouter._constants import LOG_PREVIEW_CHARS, USER_AGENT
from feedrouter.config import RouterConfig
from feedrouter.exceptions import FetchError

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def with_cache_buster(url: str, now_ms: int) -> str:
    """Append a ``t=<epoch ms>`` query parameter to *url*."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode({'t': now_ms})}"


class SourceReader(Protocol):
    """Structural reader interface used by the poll orchestrator.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpSourceReader`) concrete.
    """

    async def fetch_text(self) -> str:
        ...


class HttpSourceReader:
    """Fetch the raw source text over HTTP with cache-defeating headers."""

    def __init__(
        self,
        config: RouterConfig,
        http_session: aiohttp.ClientSession,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config
        self._http = http_session
        self._clock_ms = clock_ms

    def build_url(self) -> str:
        url = self._config.source_url
        if self._config.cache_bust:
            url = with_cache_buster(url, self._clock_ms())
        return url

    async def fetch_text(self) -> str:
        """Issue one GET against the source and return the body text.

        Raises
        ------
        FetchError
            On network failure, any non-2xx status, or a body that is not
            valid text in its declared charset.
        """
        url = self.build_url()
        headers: dict[str, str] = {
            "cache-control": "no-cache",
            "pragma": "no-cache",
            "user-agent": USER_AGENT,
        }

        _logger.debug("GET %s", url)

        try:
            async with self._http.get(url, headers=headers) as resp:
                if not 200 <= resp.status < 300:
                    preview = await resp.text(errors="replace")
                    raise FetchError(
                        f"Source fetch failed: HTTP {resp.status}: {preview[:LOG_PREVIEW_CHARS]}",
                        status_code=resp.status,
                        url=self._config.source_url,
                    )
                try:
                    text = await resp.text()
                except UnicodeDecodeError as exc:
                    raise FetchError(
                        f"Source body is not valid {exc.encoding}: {exc.reason} at byte {exc.start}",
                        status_code=resp.status,
                        url=self._config.source_url,
                    ) from exc
        except FetchError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise FetchError(
                f"Source fetch failed: {exc!r}",
                url=self._config.source_url,
            ) from exc

        _logger.debug("Fetched %d chars: %s", len(text), text[:LOG_PREVIEW_CHARS])
        return text
