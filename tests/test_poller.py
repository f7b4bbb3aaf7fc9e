from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from feedrouter._transport import HttpSourceReader
from feedrouter.broadcast import BroadcastChannel
from feedrouter.config import RouterConfig
from feedrouter.exceptions import DecodeError, FetchError
from feedrouter.ingestion import decode_key_value_csv
from feedrouter.poller import CyclePhase, PollOrchestrator
from feedrouter.state.events import PatchMessage, StateMessage
from feedrouter.state.store import StateManager


def _clock() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


@dataclass
class FakeReader:
    """Returns queued CSV bodies (or raises queued errors), repeating the last one."""

    responses: list[str | Exception] = field(default_factory=list)
    calls: int = 0
    in_flight: int = 0
    max_in_flight: int = 0
    delay: float = 0.0

    async def fetch_text(self) -> str:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            self.in_flight -= 1


class RecordingChannel(BroadcastChannel):
    def __init__(self) -> None:
        super().__init__(dict, clock=_clock)
        self.published: list[StateMessage] = []

    def publish(self, message: StateMessage) -> int:
        self.published.append(message)
        return super().publish(message)


def _csv(**values: str) -> str:
    return "key,value\n" + "\n".join(f"{k},{v}" for k, v in values.items())


def _orchestrator(
    reader: FakeReader,
    *,
    stable_reads: int = 2,
    decoder=decode_key_value_csv,
    interval: float = 0.01,
) -> tuple[PollOrchestrator, StateManager, RecordingChannel]:
    manager = StateManager(stable_reads=stable_reads)
    channel = RecordingChannel()
    orchestrator = PollOrchestrator(reader, decoder, manager, channel, interval=interval, clock=_clock)
    return orchestrator, manager, channel


@pytest.mark.asyncio
async def test_commit_after_two_stable_cycles_broadcasts_one_patch() -> None:
    orchestrator, manager, channel = _orchestrator(FakeReader([_csv(a="x")]))

    first = await orchestrator.run_cycle()
    assert first.ok
    assert first.phase is CyclePhase.RECONCILING
    assert manager.candidate("a").count == 1  # type: ignore[union-attr]
    assert channel.published == []

    second = await orchestrator.run_cycle()
    assert second.phase is CyclePhase.BROADCASTING
    assert second.changes == {"a": "x"}
    assert manager.snapshot() == {"a": "x"}
    assert channel.published == [PatchMessage(ts="2026-01-01T00:00:00.000Z", changes={"a": "x"})]
    assert orchestrator.phase is CyclePhase.IDLE


@pytest.mark.asyncio
async def test_fetch_failure_freezes_candidate_progress() -> None:
    reader = FakeReader([_csv(a="x"), FetchError("HTTP 503", status_code=503), _csv(a="x")])
    orchestrator, manager, channel = _orchestrator(reader, stable_reads=2)

    await orchestrator.run_cycle()
    failed = await orchestrator.run_cycle()

    assert not failed.ok
    assert failed.phase is CyclePhase.FETCHING
    assert isinstance(failed.error, FetchError)
    assert manager.candidate("a").count == 1  # type: ignore[union-attr]
    assert orchestrator.last_fetch_ok_at == _clock()

    resumed = await orchestrator.run_cycle()
    assert resumed.changes == {"a": "x"}
    assert len(channel.published) == 1


@pytest.mark.asyncio
async def test_decode_failure_aborts_without_mutation() -> None:
    def broken_decoder(_text: str) -> Mapping[str, str]:
        raise DecodeError("garbage")

    orchestrator, manager, channel = _orchestrator(FakeReader([_csv(a="x")]), decoder=broken_decoder)

    result = await orchestrator.run_cycle()

    assert result.phase is CyclePhase.DECODING
    assert isinstance(result.error, DecodeError)
    assert manager.snapshot() == {}
    assert manager.candidate("a") is None
    assert orchestrator.last_fetch_ok_at is None
    assert channel.published == []


@pytest.mark.asyncio
async def test_committed_value_produces_no_broadcast() -> None:
    orchestrator, manager, channel = _orchestrator(FakeReader([_csv(a="x")]), stable_reads=1)

    await orchestrator.run_cycle()
    for _ in range(3):
        result = await orchestrator.run_cycle()
        assert result.changes == {}

    assert len(channel.published) == 1


@pytest.mark.asyncio
async def test_loop_never_overlaps_cycles_and_stops_cleanly() -> None:
    reader = FakeReader([_csv(a="x")], delay=0.02)
    orchestrator, manager, _channel = _orchestrator(reader, interval=0.001)

    orchestrator.start()
    assert orchestrator.is_running
    await asyncio.sleep(0.15)
    await orchestrator.stop()

    assert not orchestrator.is_running
    assert reader.calls >= 2
    assert reader.max_in_flight == 1
    assert manager.snapshot() == {"a": "x"}

    calls = reader.calls
    await asyncio.sleep(0.05)
    assert reader.calls == calls


@pytest.mark.asyncio
async def test_loop_survives_unexpected_errors() -> None:
    reader = FakeReader([RuntimeError("boom"), _csv(a="x")])
    orchestrator, manager, _channel = _orchestrator(reader, stable_reads=1, interval=0.001)

    orchestrator.start()
    for _ in range(100):
        if manager.read("a") == "x":
            break
        await asyncio.sleep(0.005)
    await orchestrator.stop()

    assert manager.read("a") == "x"


@pytest.mark.asyncio
async def test_stop_interrupts_hung_fetch() -> None:
    reader = FakeReader([_csv(a="x")], delay=10.0)
    orchestrator, _manager, _channel = _orchestrator(reader)

    orchestrator.start()
    await asyncio.sleep(0.01)
    await asyncio.wait_for(orchestrator.stop(), timeout=1.0)

    assert reader.calls == 1
    assert orchestrator.phase is CyclePhase.IDLE


@pytest.mark.asyncio
async def test_undecodable_source_body_is_contained_in_cycle() -> None:
    async def garbled(_request: web.Request) -> web.Response:
        return web.Response(body=b"key,value\nslot1,\xff\xfe", content_type="text/csv", charset="utf-8")

    app = web.Application()
    app.router.add_get("/export", garbled)
    server = TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            reader = HttpSourceReader(RouterConfig(source_url=str(server.make_url("/export"))), session)
            manager = StateManager(stable_reads=1)
            channel = RecordingChannel()
            orchestrator = PollOrchestrator(
                reader, decode_key_value_csv, manager, channel, interval=0.01, clock=_clock
            )

            result = await orchestrator.run_cycle()
    finally:
        await server.close()

    assert result.ok is False
    assert result.phase is CyclePhase.FETCHING
    assert isinstance(result.error, FetchError)
    assert manager.snapshot() == {}
    assert channel.published == []
    assert orchestrator.last_fetch_ok_at is None
