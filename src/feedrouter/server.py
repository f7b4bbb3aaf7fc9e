"""HTTP and WebSocket surface.

Routes:
- ``GET /health``, ``GET /state``, ``GET /state/{key}``: debugging reads
- ``POST /override``: administrative commit that bypasses stability gating
- ``GET /`` and ``GET /ws`` (WebSocket upgrade): the real-time channel
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from aiohttp import WSMsgType, web

from feedrouter.router import FeedRouter
from feedrouter.state.events import iso_timestamp

_logger = logging.getLogger(__name__)

ROUTER_KEY = web.AppKey("router", FeedRouter)


def _coerce_value(value: Any) -> str:
    """String form of an override value; ``null``/missing become ``""``."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


async def health(request: web.Request) -> web.Response:
    router = request.app[ROUTER_KEY]
    last_ok = router.last_fetch_ok_at
    return web.json_response(
        {
            "ok": True,
            "ts": iso_timestamp(router.now()),
            "lastFetchOkAt": iso_timestamp(last_ok) if last_ok is not None else None,
            "keys": len(router.manager.store),
        }
    )


async def get_state(request: web.Request) -> web.Response:
    router = request.app[ROUTER_KEY]
    return web.json_response({"state": router.manager.snapshot()})


async def get_state_key(request: web.Request) -> web.Response:
    router = request.app[ROUTER_KEY]
    key = request.match_info["key"]
    return web.json_response({"key": key, "value": router.manager.read(key)})


async def post_override(request: web.Request) -> web.Response:
    router = request.app[ROUTER_KEY]
    try:
        body = await request.json()
    except ValueError:
        return web.json_response({"error": "Invalid JSON body"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "Body must be a JSON object"}, status=400)

    key = body.get("key")
    if not isinstance(key, str) or not key:
        return web.json_response({"error": "Missing key"}, status=400)

    committed = router.override(key, _coerce_value(body.get("value")))
    return web.json_response({"ok": True, "key": key, "value": committed})


async def websocket(request: web.Request) -> web.StreamResponse:
    router = request.app[ROUTER_KEY]
    ws = web.WebSocketResponse()
    if not ws.can_prepare(request).ok:
        raise web.HTTPBadRequest(text="Expected a WebSocket upgrade")
    await ws.prepare(request)

    subscriber = router.channel.connect(ws)
    sender = asyncio.create_task(subscriber.pump(), name=f"feedrouter-sub-{subscriber.id}")
    try:
        async for msg in ws:
            # Server-push only; client frames are ignored.
            if msg.type == WSMsgType.ERROR:
                _logger.debug("Subscriber %d socket error: %r", subscriber.id, ws.exception())
                break
    finally:
        router.channel.disconnect(subscriber)
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
    return ws


def create_app(router: FeedRouter) -> web.Application:
    """Build the aiohttp application around *router*.

    The router is started and stopped with the application.
    """
    app = web.Application()
    app[ROUTER_KEY] = router

    async def _router_ctx(_app: web.Application) -> AsyncIterator[None]:
        await router.start()
        yield
        await router.stop()

    async def _close_subscribers(_app: web.Application) -> None:
        await router.channel.close()

    app.cleanup_ctx.append(_router_ctx)
    app.on_shutdown.append(_close_subscribers)
    app.router.add_get("/health", health)
    app.router.add_get("/state", get_state)
    app.router.add_get("/state/{key}", get_state_key)
    app.router.add_post("/override", post_override)
    app.router.add_get("/", websocket)
    app.router.add_get("/ws", websocket)
    return app
