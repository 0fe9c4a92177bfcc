"""
Sender Chunker

Design Decision: Chunk Size
===========================

Options Considered:
| Size    | Pros                          | Cons                           |
|---------|-------------------------------|--------------------------------|
| 16KB    | Smooth progress reporting     | Many frames, header overhead   |
| 64KB    | Matches browser stream reads  | -                              |
| 256KB   | Fewer frames                  | Large relay queues per peer    |
| 1MB     | Lowest overhead               | Blows past WebSocket defaults  |

Decision: 64KB (65,536 bytes)
- Same block size a browser File.stream() reader hands out
- Frames stay far below the relay's max frame size
- The relay queues whole frames per peer, so small frames bound its memory

Send Sequence:
1. file-meta      {roomToken, transferId, name, size, mimeType}
2. file-chunk x N {roomToken, transferId, sequenceNumber 0..N-1, payload}
3. file-complete  {roomToken, transferId}

Each send is awaited before the next one starts, so chunks leave in read
order. Nothing is retried: the first failed send aborts the transfer with
SendFailed.
"""

import logging
import mimetypes
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import aiofiles

from ..errors import SendFailed
from ..protocol import FileChunk, FileComplete, FileMeta

logger = logging.getLogger(__name__)

# Chunk size: 64KB
CHUNK_SIZE = 64 * 1024  # 65,536 bytes


def new_transfer_id() -> str:
    """Nanosecond timestamp plus a random suffix, unlikely to collide in a room."""
    return f"{time.time_ns()}-{secrets.token_hex(3)}"


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or 'application/octet-stream'


class FileSource:
    """
    A finite, non-restartable stream of byte blocks with a known total size.

    Blocks may be any size; the chunker re-slices them to its chunk size.
    """

    def __init__(self, blocks: AsyncIterator[bytes], size: int,
                 name: Optional[str] = None, mime_type: Optional[str] = None):
        self._blocks = blocks
        self.size = size
        self.name = name
        self.mime_type = mime_type
        self._consumed = False

    @classmethod
    def from_path(cls, path: Path, block_size: int = CHUNK_SIZE) -> 'FileSource':
        """Stream a file from disk."""
        path = Path(path)
        size = path.stat().st_size

        async def read_blocks() -> AsyncIterator[bytes]:
            async with aiofiles.open(path, 'rb') as f:
                while True:
                    block = await f.read(block_size)
                    if not block:
                        break
                    yield block

        return cls(read_blocks(), size, name=path.name, mime_type=guess_mime_type(path))

    @classmethod
    def from_bytes(cls, data: bytes, name: Optional[str] = None,
                   mime_type: Optional[str] = None,
                   block_size: int = CHUNK_SIZE) -> 'FileSource':
        """Stream an in-memory buffer."""
        view = memoryview(data)

        async def read_blocks() -> AsyncIterator[bytes]:
            for offset in range(0, len(view), block_size):
                yield bytes(view[offset:offset + block_size])

        return cls(read_blocks(), len(data), name=name, mime_type=mime_type)

    async def blocks(self) -> AsyncIterator[bytes]:
        """Yield the source's blocks. Can only be called once."""
        if self._consumed:
            raise RuntimeError("FileSource has already been consumed")
        self._consumed = True
        async for block in self._blocks:
            yield block


@dataclass
class SendProgress:
    """Progress of one outgoing transfer."""
    transfer_id: str
    room_token: str
    total_bytes: int
    sent_bytes: int = 0
    sent_chunks: int = 0
    completed: bool = False
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> float:
        if self.total_bytes == 0:
            return 100.0 if self.completed else 0.0
        return min(100.0, self.sent_bytes / self.total_bytes * 100)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'transfer_id': self.transfer_id,
            'room_token': self.room_token,
            'total_bytes': self.total_bytes,
            'sent_bytes': self.sent_bytes,
            'sent_chunks': self.sent_chunks,
            'completed': self.completed,
            'progress_percent': self.progress_percent,
            'elapsed_seconds': self.elapsed_seconds,
        }


# Progress callback type
ProgressCallback = Callable[[SendProgress], None]


class SenderChunker:
    """
    Drives the three-phase send over a transport.

    The transport only needs an awaitable send(message).
    """

    def __init__(self, transport, chunk_size: int = CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.transport = transport
        self.chunk_size = chunk_size

        # Statistics
        self.transfers_sent = 0
        self.bytes_sent = 0

    async def send(self, source: FileSource, room_token: str,
                   transfer_id: Optional[str] = None,
                   progress_callback: ProgressCallback = None) -> SendProgress:
        """
        Send a file source to a room.

        Returns:
            Final SendProgress of the transfer

        Raises:
            SendFailed: if any frame could not be sent
        """
        transfer_id = transfer_id or new_transfer_id()
        progress = SendProgress(
            transfer_id=transfer_id,
            room_token=room_token,
            total_bytes=source.size,
        )

        logger.info(
            f"Sending {source.name or 'unnamed'} ({source.size:,} bytes) "
            f"to room {room_token} as {transfer_id}"
        )

        await self._emit(transfer_id, FileMeta(
            room_token=room_token,
            transfer_id=transfer_id,
            name=source.name,
            size=source.size,
            mime_type=source.mime_type,
        ))

        sequence_number = 0
        async for block in source.blocks():
            for offset in range(0, len(block), self.chunk_size):
                payload = block[offset:offset + self.chunk_size]
                await self._emit(transfer_id, FileChunk(
                    room_token=room_token,
                    transfer_id=transfer_id,
                    sequence_number=sequence_number,
                    payload=payload,
                ))
                sequence_number += 1
                progress.sent_chunks += 1
                progress.sent_bytes += len(payload)
                if progress_callback:
                    progress_callback(progress)

        await self._emit(transfer_id, FileComplete(
            room_token=room_token,
            transfer_id=transfer_id,
        ))

        progress.completed = True
        if progress_callback:
            progress_callback(progress)

        self.transfers_sent += 1
        self.bytes_sent += progress.sent_bytes
        logger.info(
            f"Sent {transfer_id}: {progress.sent_chunks} chunks, "
            f"{progress.sent_bytes:,} bytes"
        )
        return progress

    async def _emit(self, transfer_id: str, message):
        try:
            await self.transport.send(message)
        except Exception as e:
            logger.error(f"Transfer {transfer_id} aborted on {message.kind}: {e}")
            raise SendFailed(transfer_id, str(e)) from e

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'transfers_sent': self.transfers_sent,
            'bytes_sent': self.bytes_sent,
            'chunk_size': self.chunk_size,
        }
