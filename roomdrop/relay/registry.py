"""
Room Registry

Membership index for the relay: room token -> set of connection ids.

Rooms have no explicit create/delete operations. A room exists while it
has at least one member; join creates it and the leave/drop that empties it
removes it on the spot.

All mutations happen under one asyncio.Lock. Callers receive copies of
member sets, never the live sets.
"""

import asyncio
import logging
from typing import Dict, List, Set

logger = logging.getLogger(__name__)


class RoomRegistry:
    """In-memory room membership, lost on relay restart."""

    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def join(self, connection_id: str, room_token: str) -> bool:
        """
        Add a connection to a room.

        Returns:
            True if the connection was not already a member
        """
        async with self._lock:
            members = self._rooms.setdefault(room_token, set())
            if connection_id in members:
                return False
            members.add(connection_id)
            return True

    async def leave(self, connection_id: str, room_token: str) -> bool:
        """
        Remove a connection from a room.

        Returns:
            True if the connection was a member
        """
        async with self._lock:
            return self._discard(connection_id, room_token)

    async def drop_connection(self, connection_id: str) -> List[str]:
        """
        Remove a connection from every room it belongs to.

        Returns:
            Tokens of the rooms the connection was removed from
        """
        async with self._lock:
            left = [
                token for token, members in self._rooms.items()
                if connection_id in members
            ]
            for token in left:
                self._discard(connection_id, token)
            return left

    async def members_except(self, room_token: str, connection_id: str) -> Set[str]:
        """Other members of a room (the relay fan-out targets)."""
        async with self._lock:
            return self._rooms.get(room_token, set()) - {connection_id}

    async def members(self, room_token: str) -> Set[str]:
        async with self._lock:
            return set(self._rooms.get(room_token, ()))

    async def rooms_of(self, connection_id: str) -> Set[str]:
        async with self._lock:
            return {
                token for token, members in self._rooms.items()
                if connection_id in members
            }

    def _discard(self, connection_id: str, room_token: str) -> bool:
        # Caller holds the lock
        members = self._rooms.get(room_token)
        if members is None or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._rooms[room_token]
            logger.debug(f"Room {room_token} is empty, removed")
        return True

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def get_stats(self) -> dict:
        """Get registry statistics."""
        return {
            'rooms': len(self._rooms),
            'memberships': sum(len(m) for m in self._rooms.values()),
        }
