"""
HTTP and WebSocket handlers for the pose relay
"""
import json
import logging
import weakref

from aiohttp import web

from .config import RelayConfig
from .connection import Connection
from .registry import ConnectionRegistry
from .router import EventRouter
from .sessions import SessionStore

logger = logging.getLogger("posesync")

config_key = web.AppKey("config", RelayConfig)
store_key = web.AppKey("store", SessionStore)
registry_key = web.AppKey("registry", ConnectionRegistry)
router_key = web.AppKey("router", EventRouter)
websockets_key = web.AppKey("websockets", weakref.WeakSet)

# ============================================================
# WEBSOCKET RELAY
# ============================================================


def decode_frame(text: str):
    """
    Split a ``{"type": ..., "data": {...}}`` text frame into ``(type, data)``.
    Returns None for anything else.
    """
    try:
        message = json.loads(text)
    except ValueError:
        return None
    if not isinstance(message, dict):
        return None
    name = message.get("type")
    data = message.get("data")
    if not isinstance(name, str) or not isinstance(data, dict):
        return None
    return name, data


async def ws_relay(request: web.Request) -> web.WebSocketResponse:
    """WebSocket endpoint: one connection per browser client"""
    config = request.app[config_key]
    router = request.app[router_key]

    ws = web.WebSocketResponse(heartbeat=config.ws_heartbeat)
    await ws.prepare(request)

    connection = Connection(ws, outbox_size=config.outbox_size)
    request.app[websockets_key].add(connection)
    connection.start()
    logger.info("📡 WebSocket client connected: %s", connection.id)

    try:
        async for msg in ws:
            if msg.type != web.WSMsgType.TEXT:
                continue
            # Keepalive for clients that cannot rely on protocol pings
            if msg.data == "ping":
                connection.send_text("pong")
                continue
            frame = decode_frame(msg.data)
            if frame is None:
                logger.debug("Dropping undecodable frame from %s", connection.id)
                continue
            router.dispatch(connection, *frame)
    except Exception as e:
        logger.debug("WebSocket error on %s: %s", connection.id, e)
    finally:
        router.on_disconnect(connection)
        await connection.stop()
        request.app[websockets_key].discard(connection)
        logger.info("📡 WebSocket client disconnected: %s", connection.id)

    return ws


# ============================================================
# HEALTH
# ============================================================


async def health(request: web.Request) -> web.Response:
    """Aggregate counts only; session and user ids are never exposed"""
    store = request.app[store_key]
    registry = request.app[registry_key]
    return web.json_response({
        "ok": True,
        "sessions": store.session_count,
        "members": store.member_count,
        "connections": len(registry),
    })
