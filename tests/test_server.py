from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from feedrouter.config import RouterConfig
from feedrouter.router import FeedRouter
from feedrouter.server import create_app


def _clock() -> datetime:
    return datetime(2026, 1, 1, 8, 30, tzinfo=UTC)


class ScriptedReader:
    """Serves one CSV body per cycle, then keeps serving the last one."""

    def __init__(self, *bodies: str) -> None:
        self._bodies = list(bodies)
        self.released = asyncio.Event()

    async def fetch_text(self) -> str:
        await self.released.wait()
        return self._bodies.pop(0) if len(self._bodies) > 1 else self._bodies[0]


@pytest_asyncio.fixture
async def reader() -> ScriptedReader:
    return ScriptedReader("key,value\nslot1,alpha")


@pytest_asyncio.fixture
async def router(reader: ScriptedReader) -> FeedRouter:
    config = RouterConfig(poll_interval_ms=10, stable_reads=2)
    return FeedRouter(config, reader=reader, clock=_clock)


@pytest_asyncio.fixture
async def client(router: FeedRouter) -> AsyncIterator[TestClient]:
    async with TestClient(TestServer(create_app(router))) as test_client:
        yield test_client


@pytest.mark.asyncio
async def test_health_before_first_fetch(client: TestClient) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    assert await resp.json() == {
        "ok": True,
        "ts": "2026-01-01T08:30:00.000Z",
        "lastFetchOkAt": None,
        "keys": 0,
    }


@pytest.mark.asyncio
async def test_state_reads(client: TestClient, router: FeedRouter) -> None:
    router.manager.override("slot1", "alpha")

    resp = await client.get("/state")
    assert await resp.json() == {"state": {"slot1": "alpha"}}

    resp = await client.get("/state/slot1")
    assert await resp.json() == {"key": "slot1", "value": "alpha"}

    resp = await client.get("/state/unknown")
    assert await resp.json() == {"key": "unknown", "value": None}


@pytest.mark.asyncio
async def test_override_commits_and_validates(client: TestClient, router: FeedRouter) -> None:
    resp = await client.post("/override", json={"key": "slot2", "value": 42})
    assert resp.status == 200
    assert await resp.json() == {"ok": True, "key": "slot2", "value": "42"}
    assert router.manager.read("slot2") == "42"

    resp = await client.post("/override", json={"key": "slot3"})
    assert await resp.json() == {"ok": True, "key": "slot3", "value": ""}

    for body in ({"value": "x"}, {"key": 7, "value": "x"}, {"key": "", "value": "x"}, ["slot"]):
        resp = await client.post("/override", json=body)
        assert resp.status == 400

    resp = await client.post("/override", data="not json", headers={"content-type": "application/json"})
    assert resp.status == 400
    assert router.manager.snapshot() == {"slot2": "42", "slot3": ""}


@pytest.mark.asyncio
async def test_websocket_snapshot_then_patches(
    client: TestClient, router: FeedRouter, reader: ScriptedReader
) -> None:
    router.manager.override("existing", "1")

    ws = await client.ws_connect("/ws")
    snapshot = await ws.receive_json(timeout=1.0)
    assert snapshot == {"op": "snapshot", "ts": "2026-01-01T08:30:00.000Z", "state": {"existing": "1"}}

    resp = await client.post("/override", json={"key": "existing", "value": "2"})
    assert resp.status == 200
    patch = await ws.receive_json(timeout=1.0)
    assert patch == {"op": "patch", "ts": "2026-01-01T08:30:00.000Z", "changes": {"existing": "2"}}

    # Unchanged override does not broadcast; the next message is the polled commit.
    await client.post("/override", json={"key": "existing", "value": "2"})
    reader.released.set()
    polled = await ws.receive_json(timeout=2.0)
    assert polled["op"] == "patch"
    assert polled["changes"] == {"slot1": "alpha"}

    health = await (await client.get("/health")).json()
    assert health["keys"] == 2
    assert health["lastFetchOkAt"] == "2026-01-01T08:30:00.000Z"

    await ws.close()


@pytest.mark.asyncio
async def test_root_path_serves_websocket(client: TestClient) -> None:
    ws = await client.ws_connect("/")
    message = await ws.receive_json(timeout=1.0)
    assert message["op"] == "snapshot"
    await ws.close()


@pytest.mark.asyncio
async def test_plain_get_on_websocket_path_is_rejected(client: TestClient) -> None:
    resp = await client.get("/ws")
    assert resp.status == 400
