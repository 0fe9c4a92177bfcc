"""
Peer Client - Main Controller

Wires a transport to a sender chunker and a receiver reassembler:
- join_room / leave_room: membership messages to the relay
- send_file: three-phase send through the chunker
- incoming file-meta / file-chunk / file-complete go to the reassembler
- a lost connection fails every transfer still receiving
- a background task evicts idle transfers
"""

import asyncio
import logging
import secrets
import string
from typing import Awaitable, Callable, List, Optional

from ..protocol import (
    MessageKind, JoinRoom, LeaveRoom, PeerJoined,
    FileMeta, FileChunk, FileComplete,
)
from .chunker import CHUNK_SIZE, FileSource, ProgressCallback, SenderChunker, SendProgress
from .reassembler import Reassembler, TransferRecord, TransferState

logger = logging.getLogger(__name__)

# Callback types
FileReadyCallback = Callable[[TransferRecord], Awaitable[None]]
TransferCallback = Callable[[TransferRecord], Awaitable[None]]
PeerJoinedCallback = Callable[[PeerJoined], Awaitable[None]]

ROOM_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def new_room_token(length: int = 8) -> str:
    """Short, readable room token."""
    return ''.join(secrets.choice(ROOM_TOKEN_ALPHABET) for _ in range(length))


class PeerClient:
    """
    One peer of a room.

    The transport needs send(message), set_handler(kind, handler) and
    on_disconnect(callback); WebSocketTransport provides all three.
    """

    def __init__(self, transport, reassembler: Optional[Reassembler] = None,
                 chunk_size: int = CHUNK_SIZE, eviction_interval: float = 30.0):
        self.transport = transport
        self.reassembler = reassembler or Reassembler()
        self.chunker = SenderChunker(transport, chunk_size=chunk_size)
        self.eviction_interval = eviction_interval

        self.rooms = set()
        self._file_ready_callbacks = []
        self._started_callbacks = []
        self._failed_callbacks = []
        self._peer_joined_callbacks = []
        self._eviction_task: Optional[asyncio.Task] = None

        self._setup_handlers()

    def _setup_handlers(self):
        """Register message handlers with the transport."""
        self.transport.set_handler(MessageKind.FILE_META, self._handle_meta)
        self.transport.set_handler(MessageKind.FILE_CHUNK, self._handle_chunk)
        self.transport.set_handler(MessageKind.FILE_COMPLETE, self._handle_complete)
        self.transport.set_handler(MessageKind.PEER_JOINED, self._handle_peer_joined)
        self.transport.on_disconnect(self._handle_disconnect)

    def on_file_ready(self, callback: FileReadyCallback):
        """Register a coroutine called when a transfer reaches a final state."""
        self._file_ready_callbacks.append(callback)

    def on_peer_joined(self, callback: PeerJoinedCallback):
        self._peer_joined_callbacks.append(callback)

    def on_transfer_started(self, callback: TransferCallback):
        """Register a coroutine called when metadata for a new transfer arrives."""
        self._started_callbacks.append(callback)

    def on_transfer_failed(self, callback: TransferCallback):
        """Register a coroutine called when a transfer fails on disconnect or idle timeout."""
        self._failed_callbacks.append(callback)

    # === Membership ===

    async def join_room(self, room_token: str):
        await self.transport.send(JoinRoom(room_token=room_token))
        self.rooms.add(room_token)
        logger.info(f"Joined room {room_token}")

    async def leave_room(self, room_token: str):
        await self.transport.send(LeaveRoom(room_token=room_token))
        self.rooms.discard(room_token)
        logger.info(f"Left room {room_token}")

    # === Sending ===

    async def send_file(self, source: FileSource, room_token: str,
                        transfer_id: Optional[str] = None,
                        progress_callback: ProgressCallback = None) -> SendProgress:
        """Send a file to the other members of a room. Raises SendFailed."""
        return await self.chunker.send(
            source, room_token,
            transfer_id=transfer_id,
            progress_callback=progress_callback,
        )

    # === Receiving ===

    async def _handle_meta(self, message: FileMeta):
        known = self.reassembler.get(message.transfer_id)
        announced = known is not None and known.has_metadata
        record = self.reassembler.on_meta(message)
        if announced or record.is_terminal:
            return
        for callback in self._started_callbacks:
            await callback(record)

    async def _handle_chunk(self, message: FileChunk):
        self.reassembler.on_chunk(message)

    async def _handle_complete(self, message: FileComplete):
        record = self.reassembler.on_complete(message)
        if record is None:
            return
        for callback in self._file_ready_callbacks:
            await callback(record)

    async def _handle_peer_joined(self, message: PeerJoined):
        logger.info(f"Peer {message.peer_id} joined room {message.room_token}")
        for callback in self._peer_joined_callbacks:
            await callback(message)

    async def _handle_disconnect(self, error: Optional[BaseException]):
        failed = self.reassembler.fail_all("connection to relay lost")
        if failed:
            logger.warning(f"Connection lost, {len(failed)} transfer(s) failed")
        self.stop_eviction()
        await self._notify_failed(failed)

    # === Idle eviction ===

    def start_eviction(self):
        """Start the periodic idle-transfer eviction task."""
        if self._eviction_task is None or self._eviction_task.done():
            self._eviction_task = asyncio.create_task(self._eviction_loop())

    def stop_eviction(self):
        if self._eviction_task is not None:
            self._eviction_task.cancel()
            self._eviction_task = None

    async def evict_idle(self) -> List[str]:
        """Run one eviction pass and report transfers it failed."""
        evicted = self.reassembler.evict_idle()
        await self._notify_failed(evicted)
        return evicted

    async def _eviction_loop(self):
        while True:
            await asyncio.sleep(self.eviction_interval)
            try:
                await self.evict_idle()
            except Exception as e:
                logger.error(f"Idle eviction failed: {e}", exc_info=True)

    async def _notify_failed(self, transfer_ids: List[str]):
        for transfer_id in transfer_ids:
            record = self.reassembler.get(transfer_id)
            # records already forgotten were reported when they failed
            if record is None or record.state is not TransferState.FAILED:
                continue
            for callback in self._failed_callbacks:
                await callback(record)

    def get_stats(self) -> dict:
        """Get peer statistics."""
        stats = {
            'rooms': sorted(self.rooms),
            'sender': self.chunker.get_stats(),
            'receiver': self.reassembler.get_stats(),
        }
        if hasattr(self.transport, 'get_stats'):
            stats['transport'] = self.transport.get_stats()
        return stats
