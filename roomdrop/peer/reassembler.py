"""
Receiver Reassembler

Design Decision: Reassembly Strategy
====================================

Options Considered:
1. Append chunks to a list, sort by sequence number at completion
   - Tolerates any arrival order
   - Duplicates silently double the output

2. Write each chunk at offset seq * chunk_size in a preallocated buffer
   - No sort, no copy at the end
   - Breaks when blocks are not all the same size (browser streams)

3. Dict keyed by sequence number, join in key order at completion
   - Any arrival order, any block size
   - First-seen wins on duplicates, for free
   - Gaps are visible: max(seq) + 1 != len(chunks)

Decision: Dict keyed by sequence number
- Memory is bounded per transfer (max_transfer_bytes) instead of by a
  preallocated buffer
- Transfers idle longer than idle_timeout are failed and freed, and
  finished records nobody retrieves are forgotten after the same timeout

State Machine (per transfer id):
```
  (unknown) --meta/chunk--> RECEIVING --complete--> COMPLETE --retrieve--> (forgotten)
                                |                \
                                |                 +--gap--> INCOMPLETE
                                +--disconnect / too large / idle--> FAILED
```
Terminal records never change again. Chunks or metadata that arrive for
them are ignored.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..errors import (
    IncompleteTransfer, TransferFailed, TransferNotReady, UnknownTransfer,
)
from ..protocol import FileChunk, FileComplete, FileMeta

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRANSFER_BYTES = 100 * 1024 * 1024  # 100MB
DEFAULT_IDLE_TIMEOUT = 300.0  # seconds


class TransferState(Enum):
    RECEIVING = 'receiving'
    COMPLETE = 'complete'
    INCOMPLETE = 'incomplete'
    FAILED = 'failed'


TERMINAL_STATES = frozenset({
    TransferState.COMPLETE,
    TransferState.INCOMPLETE,
    TransferState.FAILED,
})


@dataclass
class ReceivedFile:
    """A fully reassembled file, handed out once by retrieve()."""
    transfer_id: str
    name: Optional[str]
    mime_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class TransferRecord:
    """Receiver-side state of one incoming transfer."""
    transfer_id: str
    room_token: Optional[str] = None
    name: Optional[str] = None
    size: Optional[int] = None  # declared, advisory
    mime_type: Optional[str] = None
    state: TransferState = TransferState.RECEIVING
    chunks: Dict[int, bytes] = field(default_factory=dict, repr=False)
    received_bytes: int = 0
    duplicate_chunks: int = 0
    has_metadata: bool = False
    data: Optional[bytes] = field(default=None, repr=False)
    expected_chunks: int = 0
    missing: List[int] = field(default_factory=list)
    failure_reason: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def progress_percent(self) -> Optional[float]:
        """Received vs declared bytes, None when no size was declared."""
        if not self.size:
            return None
        return min(100.0, self.received_bytes / self.size * 100)

    def release(self):
        """Drop accumulated chunk data."""
        self.chunks = {}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'transfer_id': self.transfer_id,
            'room_token': self.room_token,
            'name': self.name,
            'size': self.size,
            'mime_type': self.mime_type,
            'state': self.state.value,
            'received_bytes': self.received_bytes,
            'chunks': self.chunk_count,
            'duplicate_chunks': self.duplicate_chunks,
            'progress_percent': self.progress_percent,
            'missing': self.missing[:50],
            'failure_reason': self.failure_reason,
        }


class Reassembler:
    """
    Accumulates incoming chunks per transfer id and reassembles them in
    sequence order when the sender signals completion.

    Single-task use: all methods are synchronous and expected to be called
    from the peer's receive loop.
    """

    def __init__(self, max_transfer_bytes: int = DEFAULT_MAX_TRANSFER_BYTES,
                 idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        self.max_transfer_bytes = max_transfer_bytes
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._records: Dict[str, TransferRecord] = {}

        # Statistics
        self.transfers_completed = 0
        self.transfers_failed = 0
        self.bytes_received = 0

    # === Message handlers ===

    def on_meta(self, message: FileMeta) -> TransferRecord:
        """
        Record a transfer announcement.

        A repeated announcement for a receiving transfer refreshes the
        display metadata and keeps every chunk already received.
        """
        record = self._records.get(message.transfer_id)
        if record is None:
            record = self._new_record(message.transfer_id, message.room_token)
            logger.info(
                f"Incoming transfer {message.transfer_id}: "
                f"{message.name or 'unnamed'} ({message.size} bytes)"
            )
        elif record.is_terminal:
            logger.debug(f"Ignoring metadata for finished transfer {message.transfer_id}")
            return record
        elif record.has_metadata:
            logger.debug(f"Repeated metadata for {message.transfer_id}, merging")

        record.room_token = message.room_token
        for attr in ('name', 'size', 'mime_type'):
            value = getattr(message, attr)
            if value is not None:
                setattr(record, attr, value)
        record.has_metadata = True
        self._touch(record)

        if message.size is not None and message.size > self.max_transfer_bytes:
            self._fail(record, f"declared size {message.size} exceeds limit "
                               f"{self.max_transfer_bytes}")
        return record

    def on_chunk(self, message: FileChunk) -> TransferRecord:
        """
        Store one chunk.

        Chunks may arrive before the metadata; a placeholder record is
        created for them. The first payload seen for a sequence number wins.
        """
        record = self._records.get(message.transfer_id)
        if record is None:
            record = self._new_record(message.transfer_id, message.room_token)
            logger.debug(f"Chunk before metadata for {message.transfer_id}")
        elif record.is_terminal:
            logger.debug(
                f"Ignoring chunk {message.sequence_number} for finished "
                f"transfer {message.transfer_id}"
            )
            return record

        self._touch(record)

        if message.sequence_number in record.chunks:
            record.duplicate_chunks += 1
            logger.debug(
                f"Duplicate chunk {message.sequence_number} for "
                f"{message.transfer_id}, keeping first"
            )
            return record

        if record.received_bytes + len(message.payload) > self.max_transfer_bytes:
            self._fail(record, f"received more than {self.max_transfer_bytes} bytes")
            return record

        record.chunks[message.sequence_number] = message.payload
        record.received_bytes += len(message.payload)
        return record

    def on_complete(self, message: FileComplete) -> Optional[TransferRecord]:
        """
        Finalize a transfer.

        Returns:
            The finalized record, or None for an unknown transfer id
        """
        record = self._records.get(message.transfer_id)
        if record is None:
            logger.debug(f"Completion for unknown transfer {message.transfer_id}")
            return None
        if record.is_terminal:
            return record

        self._touch(record)
        sequence_numbers = sorted(record.chunks)
        expected = sequence_numbers[-1] + 1 if sequence_numbers else 0
        record.expected_chunks = expected

        if len(sequence_numbers) != expected:
            present = set(sequence_numbers)
            record.missing = [seq for seq in range(expected) if seq not in present]
            record.state = TransferState.INCOMPLETE
            record.release()
            self.transfers_failed += 1
            logger.warning(
                f"Transfer {record.transfer_id} incomplete: "
                f"{len(sequence_numbers)}/{expected} chunks, "
                f"{len(record.missing)} missing"
            )
            return record

        record.data = b''.join(record.chunks[seq] for seq in sequence_numbers)
        record.state = TransferState.COMPLETE
        record.release()
        self.transfers_completed += 1
        self.bytes_received += len(record.data)

        if record.size is not None and record.size != len(record.data):
            logger.warning(
                f"Transfer {record.transfer_id} declared {record.size} bytes "
                f"but {len(record.data)} arrived"
            )
        logger.info(
            f"Transfer {record.transfer_id} complete: "
            f"{record.name or 'unnamed'} ({len(record.data):,} bytes)"
        )
        return record

    # === Retrieval ===

    def retrieve(self, transfer_id: str) -> ReceivedFile:
        """
        Hand out a completed file. One-shot: the record is forgotten.

        Raises:
            UnknownTransfer: no record (never seen, or already retrieved)
            TransferNotReady: still receiving
            IncompleteTransfer: completion arrived with sequence gaps
            TransferFailed: aborted (disconnect, size limit, idle timeout)
        """
        record = self._records.get(transfer_id)
        if record is None:
            raise UnknownTransfer(transfer_id)

        if record.state is TransferState.RECEIVING:
            raise TransferNotReady(transfer_id)

        del self._records[transfer_id]

        if record.state is TransferState.INCOMPLETE:
            raise IncompleteTransfer(
                transfer_id,
                expected_chunks=record.expected_chunks,
                received_chunks=record.expected_chunks - len(record.missing),
                missing=record.missing,
            )
        if record.state is TransferState.FAILED:
            raise TransferFailed(transfer_id, record.failure_reason or 'unknown')

        return ReceivedFile(
            transfer_id=transfer_id,
            name=record.name,
            mime_type=record.mime_type,
            data=record.data,
        )

    def get(self, transfer_id: str) -> Optional[TransferRecord]:
        return self._records.get(transfer_id)

    def list_transfers(self) -> List[TransferRecord]:
        return list(self._records.values())

    # === Failure and eviction ===

    def fail(self, transfer_id: str, reason: str) -> bool:
        """Mark a receiving transfer as failed and free its chunks."""
        record = self._records.get(transfer_id)
        if record is None or record.is_terminal:
            return False
        self._fail(record, reason)
        return True

    def fail_all(self, reason: str) -> List[str]:
        """Fail every transfer still receiving (e.g. the connection dropped)."""
        failed = [
            record.transfer_id for record in self._records.values()
            if record.state is TransferState.RECEIVING
        ]
        for transfer_id in failed:
            self._fail(self._records[transfer_id], reason)
        return failed

    def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """
        Fail receiving transfers idle longer than idle_timeout, and forget
        finished records (complete, incomplete or failed) nobody retrieved
        within the same timeout.

        Returns:
            Transfer ids that were failed or forgotten
        """
        now = self._clock() if now is None else now
        evicted = []
        for record in list(self._records.values()):
            if now - record.last_activity < self.idle_timeout:
                continue
            if record.state is TransferState.RECEIVING:
                self._fail(record, f"idle for more than {self.idle_timeout:.0f}s")
                # keep the tombstone for one more timeout so retrieve() can report it
                record.last_activity = now
                evicted.append(record.transfer_id)
            else:
                if record.state is TransferState.COMPLETE:
                    logger.warning(
                        f"Dropping unretrieved transfer {record.transfer_id} "
                        f"({len(record.data or b''):,} bytes)"
                    )
                del self._records[record.transfer_id]
                evicted.append(record.transfer_id)
        if evicted:
            logger.info(f"Evicted {len(evicted)} idle transfer(s)")
        return evicted

    # === Internals ===

    def _new_record(self, transfer_id: str, room_token: Optional[str]) -> TransferRecord:
        now = self._clock()
        record = TransferRecord(
            transfer_id=transfer_id,
            room_token=room_token,
            created_at=now,
            last_activity=now,
        )
        self._records[transfer_id] = record
        return record

    def _touch(self, record: TransferRecord):
        record.last_activity = self._clock()

    def _fail(self, record: TransferRecord, reason: str):
        record.state = TransferState.FAILED
        record.failure_reason = reason
        record.release()
        self.transfers_failed += 1
        logger.warning(f"Transfer {record.transfer_id} failed: {reason}")

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        by_state: Dict[str, int] = {}
        for record in self._records.values():
            by_state[record.state.value] = by_state.get(record.state.value, 0) + 1
        return {
            'transfers': len(self._records),
            'by_state': by_state,
            'held_bytes': sum(
                r.received_bytes for r in self._records.values()
                if r.state is TransferState.RECEIVING
            ),
            'transfers_completed': self.transfers_completed,
            'transfers_failed': self.transfers_failed,
            'bytes_received': self.bytes_received,
        }
