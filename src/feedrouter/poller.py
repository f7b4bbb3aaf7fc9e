"""Poll orchestrator.

Drives the fetch -> decode -> reconcile -> broadcast cycle from a single
loop task.  The next cycle starts a fixed delay after the previous one
*ended*, so cycles never overlap and a slow fetch only delays polling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from feedrouter._transport import SourceReader
from feedrouter.broadcast import BroadcastChannel
from feedrouter.exceptions import DecodeError, FetchError
from feedrouter.state.events import build_patch, utcnow
from feedrouter.state.store import StateManager

_logger = logging.getLogger(__name__)

Decoder = Callable[[str], Mapping[str, str]]


class CyclePhase(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    DECODING = "decoding"
    RECONCILING = "reconciling"
    BROADCASTING = "broadcasting"


@dataclass(slots=True)
class CycleResult:
    """Outcome of one poll cycle.

    ``phase`` is the last phase entered; for an aborted cycle it is the
    phase that failed.
    """

    phase: CyclePhase
    changes: dict[str, str] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PollOrchestrator:
    """Runs poll cycles back to back with a fixed delay in between.

    Usage::

        orchestrator = PollOrchestrator(reader, decoder, manager, channel, interval=1.25)
        orchestrator.start()
        ...
        await orchestrator.stop()
    """

    def __init__(
        self,
        reader: SourceReader,
        decoder: Decoder,
        manager: StateManager,
        channel: BroadcastChannel,
        *,
        interval: float,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._reader = reader
        self._decoder = decoder
        self._manager = manager
        self._channel = channel
        self._interval = interval
        self._clock = clock
        self._phase = CyclePhase.IDLE
        self._last_fetch_ok_at: datetime | None = None
        self._cycles = 0
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def last_fetch_ok_at(self) -> datetime | None:
        return self._last_fetch_ok_at

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_cycle(self) -> CycleResult:
        """Run exactly one cycle.

        Fetch and decode failures abort the cycle before any state or
        candidate mutation and are returned, not raised.
        """
        self._cycles += 1
        try:
            self._phase = CyclePhase.FETCHING
            try:
                text = await self._reader.fetch_text()
            except FetchError as exc:
                _logger.warning("Poll cycle aborted while fetching: %s", exc)
                return CycleResult(CyclePhase.FETCHING, error=exc)

            self._phase = CyclePhase.DECODING
            try:
                observed = self._decoder(text)
            except DecodeError as exc:
                _logger.warning("Poll cycle aborted while decoding: %s", exc)
                return CycleResult(CyclePhase.DECODING, error=exc)
            self._last_fetch_ok_at = self._clock()

            self._phase = CyclePhase.RECONCILING
            changes = self._manager.reconcile(observed)
            if not changes:
                return CycleResult(CyclePhase.RECONCILING)

            self._phase = CyclePhase.BROADCASTING
            delivered = self._channel.publish(build_patch(changes, clock=self._clock))
            _logger.debug("Broadcast %d change(s) to %d subscriber(s)", len(changes), delivered)
            return CycleResult(CyclePhase.BROADCASTING, changes=changes)
        finally:
            self._phase = CyclePhase.IDLE

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.exception("Unexpected error in poll cycle")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)

    def start(self) -> None:
        """Start the poll loop on the running event loop."""
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="feedrouter-poll")

    async def stop(self) -> None:
        """Stop the loop; an in-flight cycle is cancelled at its fetch."""
        task = self._task
        self._task = None
        if task is None:
            return
        self._stopping.set()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
