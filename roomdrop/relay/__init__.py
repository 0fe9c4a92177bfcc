"""
Relay Module - Room Membership and Frame Forwarding

Server-side state: which connections are in which room, and the router
that fans frames out to the other members of a room.
"""

from .registry import RoomRegistry
from .lifecycle import ConnectionManager, PeerOutbox, DEFAULT_MAX_PENDING
from .router import RelayRouter

__all__ = [
    'RoomRegistry',
    'ConnectionManager',
    'PeerOutbox',
    'DEFAULT_MAX_PENDING',
    'RelayRouter',
]
