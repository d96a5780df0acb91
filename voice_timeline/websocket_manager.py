"""
WebSocketManager: pushes scheduler views to live page clients.

One manager serves every connection. Each connection gets its own bounded queue
and sender task so a slow client never delays the scheduler tick; when a
queue is full the oldest view is dropped, since only the newest one matters.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

from voice_timeline.scheduler import TimelineView

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 4


class _Connection:
    def __init__(self, websocket: WebSocket) -> None:
        self.ws = websocket
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=_QUEUE_SIZE)
        self.closed = False

    def offer(self, message: str) -> None:
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(message)

    async def sender(self) -> None:
        while not self.closed:
            message = await self.queue.get()
            try:
                await self.ws.send_text(message)
            except Exception as e:
                logger.debug("View socket send failed, closing: %s", e)
                self.closed = True


class WebSocketManager:
    """Registered as a ViewScheduler observer; fans every view out to open sockets."""

    def __init__(self) -> None:
        self._connections: set[_Connection] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def publish(self, view: TimelineView) -> None:
        if not self._connections:
            return
        message = json.dumps({"type": "view", "view": view.to_dict()})
        for conn in list(self._connections):
            if not conn.closed:
                conn.offer(message)

    async def serve(self, websocket: WebSocket, initial: TimelineView | None = None) -> None:
        """Run one accepted connection until the client disconnects."""
        conn = _Connection(websocket)
        self._connections.add(conn)
        if initial is not None:
            conn.offer(json.dumps({"type": "view", "view": initial.to_dict()}))
        sender_task: asyncio.Task[Any] = asyncio.create_task(conn.sender())
        try:
            while not conn.closed:
                msg = await websocket.receive()
                if msg.get("type") == "websocket.disconnect":
                    break
                # Client messages are ignored; the socket is push-only.
        finally:
            conn.closed = True
            self._connections.discard(conn)
            sender_task.cancel()
            try:
                await sender_task
            except asyncio.CancelledError:
                pass
