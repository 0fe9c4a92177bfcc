"""
Peer Transport

WebSocket connection from a peer to the relay. Outgoing messages are encoded
as binary frames; incoming frames are decoded and dispatched to the handler
registered for their kind.

Design Decision: Client Library
===============================

Options Considered:
1. aiohttp client websockets - pulls in a whole HTTP client
2. websockets - small, asyncio-native, what uvicorn already uses
3. Raw TCP with custom framing - the relay speaks WebSocket, so no

Decision: websockets
- One frame per protocol message, no extra framing needed
- send() completes once the frame is handed to the connection, which is
  the ordering point the sender relies on
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import MalformedFrame
from ..protocol import MessageKind, Message, decode_frame, encode_frame

logger = logging.getLogger(__name__)

# Type for message handlers
MessageHandler = Callable[[Message], Awaitable[None]]
DisconnectCallback = Callable[[Optional[BaseException]], Awaitable[None]]


class WebSocketTransport:
    """
    A peer's connection to the relay.

    Usage:
        transport = WebSocketTransport("ws://localhost:3000/ws")

        @transport.on(MessageKind.FILE_CHUNK)
        async def handle_chunk(message):
            ...

        await transport.connect()
        asyncio.create_task(transport.run())
        await transport.send(JoinRoom(room_token="abc123"))
    """

    def __init__(self, url: str, max_frame_bytes: Optional[int] = None,
                 open_timeout: float = 10.0):
        self.url = url
        self.max_frame_bytes = max_frame_bytes
        self.open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._handlers: Dict[MessageKind, MessageHandler] = {}
        self._disconnect_callbacks: List[DisconnectCallback] = []
        self._closed = asyncio.Event()

        # Statistics
        self.frames_sent = 0
        self.frames_received = 0
        self.frames_skipped = 0
        self.handler_errors = 0

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._closed.is_set()

    def on(self, kind: MessageKind):
        """Decorator to register a message handler."""
        def decorator(handler: MessageHandler):
            self._handlers[kind] = handler
            return handler
        return decorator

    def set_handler(self, kind: MessageKind, handler: MessageHandler):
        """Set a message handler."""
        self._handlers[kind] = handler

    def on_disconnect(self, callback: DisconnectCallback):
        """Register a coroutine called once when the connection is lost."""
        self._disconnect_callbacks.append(callback)

    async def connect(self):
        """Open the connection to the relay."""
        self._ws = await connect(
            self.url,
            max_size=self.max_frame_bytes,
            open_timeout=self.open_timeout,
        )
        self._closed.clear()
        logger.info(f"Connected to relay {self.url}")

    async def send(self, message: Message):
        """
        Send a message to the relay.

        Raises:
            ConnectionError: if the transport is not connected or the
                connection drops during the send
        """
        if not self.is_connected:
            raise ConnectionError("Not connected to relay")

        try:
            await self._ws.send(encode_frame(message))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            raise ConnectionError(f"Send failed: {e}") from e
        self.frames_sent += 1

    async def run(self):
        """Receive frames until the connection closes, dispatching each one."""
        if self._ws is None:
            raise ConnectionError("Not connected to relay")

        error: Optional[BaseException] = None
        try:
            async for frame in self._ws:
                if isinstance(frame, str):
                    self.frames_skipped += 1
                    continue
                await self._dispatch(frame)
        except ConnectionClosed as e:
            error = e
            logger.warning(f"Relay connection lost: {e}")
        finally:
            await self._ws.close()
            await self._mark_closed(error)

    async def _dispatch(self, frame: bytes):
        try:
            message = decode_frame(frame, max_size=self.max_frame_bytes)
        except MalformedFrame as e:
            self.frames_skipped += 1
            logger.warning(f"Skipping malformed frame from relay: {e}")
            return

        self.frames_received += 1
        handler = self._handlers.get(message.message_kind)
        if handler:
            try:
                await handler(message)
            except Exception as e:
                self.handler_errors += 1
                logger.error(f"Error handling {message.kind}: {e}", exc_info=True)
        else:
            logger.debug(f"No handler for {message.kind}")

    async def _mark_closed(self, error: Optional[BaseException]):
        if self._closed.is_set():
            return
        self._closed.set()
        for callback in self._disconnect_callbacks:
            await callback(error)

    async def wait_closed(self):
        await self._closed.wait()

    async def close(self):
        """Close the connection."""
        if self._ws is not None:
            await self._ws.close()
        await self._mark_closed(None)

    def get_stats(self) -> dict:
        """Get transport statistics."""
        return {
            'url': self.url,
            'connected': self.is_connected,
            'frames_sent': self.frames_sent,
            'frames_received': self.frames_received,
            'frames_skipped': self.frames_skipped,
            'handler_errors': self.handler_errors,
        }
