from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class RoomWebSocketHub:
    """In-process WebSocket fan-out keyed by room code.

    Contract:
      - register a connection for a room via `connect(room_code, websocket)`.
      - push events with `broadcast(room_code, payload)`.

    Payloads should be JSON-serializable dicts. Delivery is best effort: a
    socket whose send fails is dropped from the registry and nobody else hears
    about it.

    Note: state lives in this process only. Clients connected to another
    replica never see these pushes and rely on snapshot polling; running more
    than one replica would need Redis pub/sub behind this class.
    """

    def __init__(self) -> None:
        self._by_room: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, room_code: str, websocket: WebSocket, *, initial: dict[str, object] | None = None) -> None:
        """Accept the socket, send `initial` (if any), then register it.

        Sending before registering keeps a concurrent broadcast from landing
        ahead of the greeting.
        """

        await websocket.accept()
        if initial is not None:
            await websocket.send_json(initial)
        async with self._lock:
            self._by_room[room_code].add(websocket)
            count = len(self._by_room[room_code])
        logger.info("WebSocket connected to room %s (%d local)", room_code, count)

    async def disconnect(self, room_code: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_room.get(room_code)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_room.pop(room_code, None)
        logger.info("WebSocket disconnected from room %s", room_code)

    async def connection_count(self, room_code: str) -> int:
        async with self._lock:
            return len(self._by_room.get(room_code, ()))

    async def broadcast(self, room_code: str, payload: dict[str, object]) -> int:
        """Send `payload` to every socket in the room; returns how many succeeded."""

        async with self._lock:
            conns = list(self._by_room.get(room_code, ()))

        if not conns:
            return 0

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                logger.debug("Dropping dead WebSocket in room %s", room_code, exc_info=True)
                dead.append(ws)

        if dead:
            async with self._lock:
                conns_now = self._by_room.get(room_code)
                if conns_now is not None:
                    conns_now.difference_update(dead)
                    if not conns_now:
                        self._by_room.pop(room_code, None)

        return len(conns) - len(dead)


hub = RoomWebSocketHub()
