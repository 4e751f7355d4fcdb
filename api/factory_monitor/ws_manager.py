
import asyncio
from typing import Optional, Set

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()


class WSManager:
    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()
        self._queue: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the single sender task that drains published payloads in order."""
        if self._sender is not None:
            return
        self._queue = asyncio.Queue()
        self._sender = loop.create_task(self._drain())

    async def stop(self) -> None:
        if self._sender:
            self._sender.cancel()
            try:
                await self._sender
            except asyncio.CancelledError:
                pass
            self._sender = None
            self._queue = None

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._connections.add(ws)

    def disconnect(self, ws: WebSocket) -> None:
        self._connections.discard(ws)

    async def broadcast_json(self, payload) -> None:
        # best-effort broadcast
        for ws in list(self._connections):
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.info("Dropping websocket client", error=str(e))
                self.disconnect(ws)

    async def _drain(self) -> None:
        while True:
            payload = await self._queue.get()
            await self.broadcast_json(payload)

    def publish(self, payload) -> None:
        """Queue a broadcast from synchronous code running on the loop."""
        if self._queue is None or not self._connections:
            return
        self._queue.put_nowait(payload)
