"""High-level router service wiring reader, state, channel and poller."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import aiohttp

from feedrouter._transport import HttpSourceReader, SourceReader
from feedrouter.broadcast import BroadcastChannel
from feedrouter.config import RouterConfig
from feedrouter.exceptions import RouterError
from feedrouter.ingestion import decode_key_value_csv
from feedrouter.poller import Decoder, PollOrchestrator
from feedrouter.state.events import build_patch, utcnow
from feedrouter.state.store import StateManager

_logger = logging.getLogger(__name__)


class FeedRouter:
    """Polls the source and keeps subscribers in sync with committed state.

    Usage::

        async with FeedRouter(config) as router:
            subscriber = router.channel.connect(websocket)
            ...
    """

    def __init__(
        self,
        config: RouterConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        reader: SourceReader | None = None,
        decoder: Decoder = decode_key_value_csv,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._reader = reader
        self._decoder = decoder
        self._clock = clock
        self._manager = StateManager(stable_reads=config.stable_reads)
        self._channel = BroadcastChannel(self._manager.snapshot, clock=clock)
        self._poller: PollOrchestrator | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FeedRouter:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._poller is not None:
            return
        reader = self._reader
        if reader is None:
            if self._http_session is None:
                timeout = (
                    aiohttp.ClientTimeout(total=self._config.fetch_timeout)
                    if self._config.fetch_timeout is not None
                    else None
                )
                self._http_session = (
                    aiohttp.ClientSession(timeout=timeout) if timeout is not None else aiohttp.ClientSession()
                )
            reader = HttpSourceReader(self._config, self._http_session)
        self._poller = PollOrchestrator(
            reader,
            self._decoder,
            self._manager,
            self._channel,
            interval=self._config.poll_interval,
            clock=self._clock,
        )
        self._poller.start()
        _logger.info(
            "Polling %s every %dms; stable reads required: %d",
            self._config.source_url,
            self._config.poll_interval_ms,
            self._config.stable_reads,
        )

    async def stop(self) -> None:
        poller = self._poller
        self._poller = None
        if poller is not None:
            await poller.stop()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> RouterConfig:
        return self._config

    @property
    def manager(self) -> StateManager:
        return self._manager

    @property
    def channel(self) -> BroadcastChannel:
        return self._channel

    @property
    def poller(self) -> PollOrchestrator:
        if self._poller is None:
            raise RouterError("Router not started. Use 'async with FeedRouter(...) as router:'")
        return self._poller

    @property
    def last_fetch_ok_at(self) -> datetime | None:
        return self._poller.last_fetch_ok_at if self._poller is not None else None

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Administrative fast path
    # ------------------------------------------------------------------

    def override(self, key: str, value: str) -> str:
        """Commit *value* for *key* immediately and broadcast if it changed.

        Bypasses stability gating.  Returns the committed value.
        """
        if self._manager.override(key, value):
            self._channel.publish(build_patch({key: value}, clock=self._clock))
        return value
