"""
MODULE OVERVIEW:
The central socket registry and room-based fan-out for the `/generation` channel.

WHAT IS HAPPENING HERE:
This single object holds every accepted WebSocket and the room each one is
watching. A room is keyed by generation id, so `emit_to_generation()` reaches only
the clients that joined that job. This replaces the socket.io rooms the hosted
backend uses with two plain dicts.
A socket watches at most one generation at a time; joining another one moves it.
"""
import asyncio
from datetime import datetime, timezone

from fastapi.websockets import WebSocket
from loguru import logger

from scriptstream.shared.client_utils import utc_now_iso
from scriptstream.shared.events import encode_message
from scriptstream.shared.models import ConnectionStats


class ConnectionManager:
    def __init__(self):
        self.active_sockets: dict[str, WebSocket] = {}
        # generation_id -> connection ids watching it
        self.rooms: dict[str, set[str]] = {}
        # connection_id -> generation_id
        self.memberships: dict[str, str] = {}

        self.total_events_dispatched = 0
        self.startup_time = datetime.now(timezone.utc)

    # ==========================
    # SOCKET MANAGEMENT
    # ==========================
    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_sockets[connection_id] = websocket
        logger.info(f"client_id={connection_id} protocol=websocket event=connect reason=accepted")

    def disconnect(self, connection_id: str) -> None:
        self.leave(connection_id)
        if self.active_sockets.pop(connection_id, None) is not None:
            logger.info(f"client_id={connection_id} protocol=websocket event=disconnect reason=cleanup")

    # ==========================
    # ROOMS
    # ==========================
    def join(self, connection_id: str, generation_id: str) -> None:
        self.leave(connection_id)
        self.memberships[connection_id] = generation_id
        self.rooms.setdefault(generation_id, set()).add(connection_id)
        logger.info(f"client_id={connection_id} event=join_room generation_id={generation_id} watchers={self.watchers(generation_id)}")

    def leave(self, connection_id: str) -> None:
        generation_id = self.memberships.pop(connection_id, None)
        if generation_id is None:
            return
        room = self.rooms.get(generation_id)
        if room is not None:
            room.discard(connection_id)
            if not room:
                del self.rooms[generation_id]

    def watchers(self, generation_id: str) -> int:
        return len(self.rooms.get(generation_id, ()))

    # ==========================
    # SENDING
    # ==========================
    async def send(self, connection_id: str, event: str, data: dict) -> bool:
        websocket = self.active_sockets.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(encode_message(event, {"timestamp": utc_now_iso(), **data}))
        except Exception as e:
            logger.warning(f"client_id={connection_id} protocol=websocket event=error reason='{e}'")
            self.disconnect(connection_id)
            return False
        self.total_events_dispatched += 1
        return True

    async def emit_to_generation(self, generation_id: str, event: str, data: dict | None = None) -> int:
        """Sends one event to every socket in the generation's room. Returns how many got it."""
        payload = {"generationId": generation_id, **(data or {})}
        # Copy: a failed send removes the socket from the room while we iterate
        targets = list(self.rooms.get(generation_id, ()))
        results = await asyncio.gather(*(self.send(cid, event, payload) for cid in targets))
        delivered = sum(results)
        logger.debug(f"event={event} generation_id={generation_id} delivered={delivered}/{len(targets)}")
        return delivered

    # ==========================
    # METRICS
    # ==========================
    def get_stats(self) -> ConnectionStats:
        return ConnectionStats(
            active_sockets=len(self.active_sockets),
            active_generations=len(self.rooms),
            total_events_dispatched=self.total_events_dispatched,
            uptime_s=(datetime.now(timezone.utc) - self.startup_time).total_seconds(),
            server_time=datetime.now(timezone.utc),
        )


# Global singleton instance
manager = ConnectionManager()
