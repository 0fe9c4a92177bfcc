"""
Connection Lifecycle

Tracks live relay connections and keeps the room registry consistent with
them:

- connect:    register the connection's outbox (no room action)
- join:       registry join, then notify the other members with peer-joined
- leave:      registry leave
- disconnect: drop from every room, close the outbox

Design Decision: Fan-out Isolation
==================================

Options Considered:
1. Await each member's socket write in turn
   - One stalled peer delays delivery to everyone after it

2. Spawn a task per (frame, member)
   - Isolated, but frames to one member may be written out of order

3. One bounded queue + one writer task per connection
   - Per-peer FIFO order preserved
   - A slow peer only fills its own queue

Decision: Bounded outbox per connection
- deliver() never blocks; it is put_nowait on the member's queue
- A member whose queue overflows is cut off (its outbox closes and the
  server closes its socket). A transfer that cannot keep up fails instead
  of stalling the room.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from ..protocol import PeerJoined, encode_frame
from .registry import RoomRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 256


class PeerOutbox:
    """Bounded queue of frames waiting to be written to one connection."""

    def __init__(self, connection_id: str, max_pending: int = DEFAULT_MAX_PENDING):
        self.connection_id = connection_id
        self.max_pending = max_pending
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self.overflowed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, frame: bytes) -> bool:
        """Queue a frame without waiting. Returns False if it was not queued."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                f"Outbox for {self.connection_id} overflowed "
                f"({self.max_pending} frames pending), disconnecting"
            )
            self.overflowed = True
            self.close()
            return False
        return True

    async def get(self) -> Optional[bytes]:
        """Next frame to write, or None once the outbox is closed."""
        return await self._queue.get()

    def close(self):
        """Discard pending frames and wake the writer with a None sentinel."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)


class ConnectionManager:
    """Live connections of the relay and their room membership."""

    def __init__(self, registry: Optional[RoomRegistry] = None):
        self.registry = registry or RoomRegistry()
        self._outboxes: Dict[str, PeerOutbox] = {}

        # Statistics
        self.total_connections = 0

    def connect(self, connection_id: str, outbox: PeerOutbox):
        """Register a new connection. It is inert until it joins a room."""
        self._outboxes[connection_id] = outbox
        self.total_connections += 1
        logger.info(f"Connection {connection_id} opened")

    async def join(self, connection_id: str, room_token: str) -> bool:
        """Join a room and announce the newcomer to the other members."""
        added = await self.registry.join(connection_id, room_token)
        if not added:
            logger.debug(f"{connection_id} already in room {room_token}")
            return False

        logger.info(f"{connection_id} joined room {room_token}")
        others = await self.registry.members_except(room_token, connection_id)
        if others:
            notice = encode_frame(PeerJoined(peer_id=connection_id, room_token=room_token))
            self.deliver(others, notice)
        return True

    async def leave(self, connection_id: str, room_token: str) -> bool:
        removed = await self.registry.leave(connection_id, room_token)
        if removed:
            logger.info(f"{connection_id} left room {room_token}")
        return removed

    async def disconnect(self, connection_id: str) -> List[str]:
        """Forget a connection and remove it from every room."""
        rooms = await self.registry.drop_connection(connection_id)
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is not None:
            outbox.close()
        logger.info(f"Connection {connection_id} closed (was in {len(rooms)} room(s))")
        return rooms

    def deliver(self, targets: Iterable[str], frame: bytes) -> int:
        """
        Hand a frame to each target's outbox.

        Returns:
            Number of targets the frame was queued for
        """
        delivered = 0
        for target in targets:
            outbox = self._outboxes.get(target)
            if outbox is not None and outbox.deliver(frame):
                delivered += 1
        return delivered

    @property
    def connection_count(self) -> int:
        return len(self._outboxes)

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            'connections': self.connection_count,
            'total_connections': self.total_connections,
            **self.registry.get_stats(),
        }
