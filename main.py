#!/usr/bin/env python3
"""
PoseSync relay - Entry Point
WebSocket session relay + rate limiting + idle reaper
"""
import asyncio
import logging
import os
import socket
import time
import weakref
from typing import Dict, List, Optional

from aiohttp import web

from posesync.api import (
    config_key, registry_key, router_key, store_key, websockets_key,
    health, ws_relay,
)
from posesync.config import RelayConfig
from posesync.reaper import IdleReaper
from posesync.registry import ConnectionRegistry
from posesync.router import EventRouter
from posesync.sessions import SessionStore

logger = logging.getLogger("posesync")

reaper_key = web.AppKey("reaper", IdleReaper)


def make_rate_limit_middleware(
    limit: int,
    window: float = 60.0,
    clock=time.time,
    rate_limit_store: Optional[Dict[str, List[float]]] = None,
):
    """Simple rate limiting: ``limit`` requests per ``window`` seconds per IP"""
    if rate_limit_store is None:
        rate_limit_store = {}
    last_sweep = clock()

    def sweep(now: float) -> None:
        # IPs with nothing inside the window are forgotten
        for ip in list(rate_limit_store):
            recent = [t for t in rate_limit_store[ip] if now - t < window]
            if recent:
                rate_limit_store[ip] = recent
            else:
                del rate_limit_store[ip]

    @web.middleware
    async def rate_limit_middleware(request, handler):
        nonlocal last_sweep
        ip = request.remote
        now = clock()

        # Skip rate limiting for static assets
        if request.path.startswith('/static'):
            return await handler(request)

        if now - last_sweep >= window:
            sweep(now)
            last_sweep = now

        # Clean old entries
        recent = [t for t in rate_limit_store.get(ip, ()) if now - t < window]

        if len(recent) >= limit:
            rate_limit_store[ip] = recent
            logger.warning("Rate limit exceeded for %s", ip)
            return web.json_response(
                {"ok": False, "error": "Rate limit exceeded"},
                status=429
            )

        recent.append(now)
        rate_limit_store[ip] = recent
        return await handler(request)

    return rate_limit_middleware


async def index(request):
    return web.FileResponse(request.app[config_key].static_dir / 'index.html')


async def start_background_tasks(app):
    app[reaper_key].start()


async def stop_background_tasks(app):
    await app[reaper_key].stop()


async def close_connections(app):
    """Close every open socket on shutdown, joined or not"""
    await asyncio.gather(
        *(c.close("server shutdown") for c in list(app[websockets_key])),
        return_exceptions=True,
    )


def create_app(config: Optional[RelayConfig] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    config = config or RelayConfig.from_env()
    app = web.Application(middlewares=[make_rate_limit_middleware(config.rate_limit)])

    store = SessionStore()
    registry = ConnectionRegistry()
    router = EventRouter(store, registry)

    app[config_key] = config
    app[store_key] = store
    app[registry_key] = registry
    app[router_key] = router
    app[websockets_key] = weakref.WeakSet()
    app[reaper_key] = IdleReaper(
        router, interval=config.reap_interval, idle_timeout=config.idle_timeout
    )

    # WebSocket relay
    app.router.add_get("/ws", ws_relay)
    app.router.add_get("/health", health)

    # Static client, when present
    if config.static_dir.is_dir():
        app.router.add_get("/", index)
        app.router.add_static('/static', config.static_dir, name='static')
    else:
        logger.warning("Static dir %s not found, serving relay only", config.static_dir)

    app.on_startup.append(start_background_tasks)
    app.on_shutdown.append(close_connections)
    app.on_cleanup.append(stop_background_tasks)

    logger.info(
        "🕺 PoseSync relay ready • reap every %ss, idle after %ss",
        config.reap_interval, config.idle_timeout,
    )
    return app


def get_local_ip():
    """Get local network IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def main():
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    config = RelayConfig.from_env()
    app = create_app(config)
    local_ip = get_local_ip()

    logger.info("🚀 Starting server on %s:%s", config.host, config.port)
    logger.info("💡 Access at: http://%s:%s", local_ip, config.port)

    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
