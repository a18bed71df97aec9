"""
Outbound channel for one WebSocket peer.

The router only ever calls ``send``, which enqueues and returns immediately.
A per-connection writer task drains the queue onto the socket, so a slow or
dead peer never holds up the connection whose event is being fanned out.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from .utils import generate_connection_id

logger = logging.getLogger("posesync")


class Connection:
    def __init__(self, ws: web.WebSocketResponse, *, outbox_size: int = 256) -> None:
        self.id = generate_connection_id()
        self.ws = ws
        self._outbox: "asyncio.Queue[str]" = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"<Connection {self.id}>"

    @property
    def closed(self) -> bool:
        return self._closed or self.ws.closed

    def start(self) -> None:
        """Start the writer task; must run inside the event loop"""
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"writer-{self.id}")

    def send(self, event: str, data: Dict[str, Any]) -> bool:
        """Queue ``{"type": event, "data": data}`` for delivery; never blocks"""
        return self.send_text(json.dumps({"type": event, "data": data}))

    def send_text(self, text: str) -> bool:
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("📭 Outbox full for %s, dropping frame", self.id)
            return False
        return True

    async def _drain(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self.ws.send_str(message)
            except Exception as e:
                # The reader side sees the broken socket and runs disconnect
                logger.debug("Failed to send to %s: %s", self.id, e)
                self._closed = True
                return

    async def close(self, message: str = "") -> None:
        """Close the socket; safe to call more than once"""
        self._closed = True
        if not self.ws.closed:
            await self.ws.close(message=message.encode())

    async def stop(self) -> None:
        """Cancel the writer task once the socket is done"""
        self._closed = True
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
