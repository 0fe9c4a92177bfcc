"""
Relay Router

Takes every frame a connection sends and decides what happens to it:

| kind          | action                                          |
|---------------|-------------------------------------------------|
| join-room     | lifecycle join (+ peer-joined to other members) |
| leave-room    | lifecycle leave                                 |
| file-meta     | forward verbatim to the other room members      |
| file-chunk    | forward verbatim to the other room members      |
| file-complete | forward verbatim to the other room members      |
| peer-joined   | dropped (relay-originated only)                 |

The router is fail-silent. Malformed frames are dropped and nothing is
sent back; a room with no other members swallows the frame. It does not
buffer, reorder, acknowledge or inspect chunk payloads.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from ..errors import MalformedFrame
from ..protocol import (
    MessageKind, Message, RELAYED_KINDS, JoinRoom, LeaveRoom, decode_frame,
)
from .lifecycle import ConnectionManager

logger = logging.getLogger(__name__)

# (sender_id, message, raw_frame) -> number of peers the frame went to
RouteHandler = Callable[[str, Message, bytes], Awaitable[int]]


class RelayRouter:
    """Dispatches decoded frames to membership changes or room fan-out."""

    def __init__(self, connections: ConnectionManager,
                 max_frame_bytes: Optional[int] = None):
        self.connections = connections
        self.registry = connections.registry
        self.max_frame_bytes = max_frame_bytes
        self._handlers: Dict[MessageKind, RouteHandler] = {}

        # Statistics
        self.frames_routed = 0
        self.frames_dropped = 0
        self.frames_forwarded = 0
        self.bytes_relayed = 0

        self._setup_handlers()

    def _setup_handlers(self):
        """Register a handler per message kind."""
        self.set_handler(MessageKind.JOIN_ROOM, self._handle_join)
        self.set_handler(MessageKind.LEAVE_ROOM, self._handle_leave)
        for kind in RELAYED_KINDS:
            self.set_handler(kind, self._forward)

    def set_handler(self, kind: MessageKind, handler: RouteHandler):
        self._handlers[kind] = handler

    async def route(self, sender_id: str, frame: bytes) -> int:
        """
        Route one frame received from `sender_id`.

        Returns:
            Number of peers the frame was handed to (0 for membership
            messages and dropped frames)
        """
        try:
            message = decode_frame(frame, max_size=self.max_frame_bytes)
        except MalformedFrame as e:
            self.frames_dropped += 1
            logger.debug(f"Dropped malformed frame from {sender_id}: {e}")
            return 0

        handler = self._handlers.get(message.message_kind)
        if handler is None:
            self.frames_dropped += 1
            logger.debug(f"Dropped {message.kind} frame from {sender_id}")
            return 0

        self.frames_routed += 1
        return await handler(sender_id, message, frame)

    async def _handle_join(self, sender_id: str, message: JoinRoom,
                           frame: bytes) -> int:
        await self.connections.join(sender_id, message.room_token)
        return 0

    async def _handle_leave(self, sender_id: str, message: LeaveRoom,
                            frame: bytes) -> int:
        await self.connections.leave(sender_id, message.room_token)
        return 0

    async def _forward(self, sender_id: str, message: Message, frame: bytes) -> int:
        """Send the frame, unmodified, to every other member of its room."""
        targets = await self.registry.members_except(message.room_token, sender_id)
        if not targets:
            logger.debug(
                f"No other members in room {message.room_token}, "
                f"{message.kind} from {sender_id} dropped"
            )
            return 0

        delivered = self.connections.deliver(targets, frame)
        self.frames_forwarded += delivered
        self.bytes_relayed += len(frame) * delivered
        logger.debug(
            f"Relayed {message.kind} ({len(frame)} bytes) from {sender_id} "
            f"to {delivered}/{len(targets)} peer(s) in {message.room_token}"
        )
        return delivered

    def get_stats(self) -> dict:
        """Get router statistics."""
        return {
            'frames_routed': self.frames_routed,
            'frames_dropped': self.frames_dropped,
            'frames_forwarded': self.frames_forwarded,
            'bytes_relayed': self.bytes_relayed,
        }
