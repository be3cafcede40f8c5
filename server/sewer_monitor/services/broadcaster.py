"""
Real-time fan-out to connected dashboard clients.

Alert and reading events are published to logical topics ("dashboard" by
default). Each connected WebSocket client joins one or more topics and
receives every event as a JSON object ``{"event": ..., "data": ...}``.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Protocol

from fastapi import WebSocket

logger = logging.getLogger(__name__)

DASHBOARD_TOPIC = "dashboard"


class EventPublisher(Protocol):
    async def publish(self, event: str, data: dict[str, Any]) -> None: ...


class NullPublisher:
    """Publisher used when no live transport is attached."""

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        logger.debug("Dropping %s event, no transport attached", event)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class ConnectionManager:
    """Tracks WebSocket clients per topic and broadcasts events to them."""

    def __init__(self, topic: str = DASHBOARD_TOPIC):
        self.topic = topic
        self._rooms: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(set().union(*self._rooms.values())) if self._rooms else 0

    async def connect(self, websocket: WebSocket, topic: str | None = None) -> None:
        await websocket.accept()
        await self.join(websocket, topic or self.topic)
        logger.info("Client connected to '%s' (%d total)", topic or self.topic, self.connection_count)

    async def join(self, websocket: WebSocket, topic: str) -> None:
        async with self._lock:
            self._rooms.setdefault(topic, set()).add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for members in self._rooms.values():
                members.discard(websocket)
        logger.info("Client disconnected (%d remaining)", self.connection_count)

    async def publish(self, event: str, data: dict[str, Any], topic: str | None = None) -> None:
        """Send an event to every client of the topic. Never raises."""
        room = topic or self.topic
        async with self._lock:
            members = list(self._rooms.get(room, ()))
        if not members:
            return

        message = {"event": event, "data": _jsonable(data)}
        stale: list[WebSocket] = []
        for websocket in members:
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.warning("Failed to deliver %s to client: %s", event, exc)
                stale.append(websocket)

        for websocket in stale:
            await self.disconnect(websocket)
