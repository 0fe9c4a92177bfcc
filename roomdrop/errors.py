"""
Exception types shared by the relay and the peers.
"""

from typing import List, Optional


class RoomdropError(Exception):
    """Base class for all roomdrop errors."""


class MalformedFrame(RoomdropError, ValueError):
    """A frame could not be decoded into a protocol message."""


class SendFailed(RoomdropError):
    """The sender could not hand a frame to the transport. Fatal to the transfer."""

    def __init__(self, transfer_id: str, reason: str):
        super().__init__(f"Transfer {transfer_id} failed: {reason}")
        self.transfer_id = transfer_id
        self.reason = reason


class ReassemblyError(RoomdropError):
    """Base class for conditions reported by the receiver's retrieve()."""

    def __init__(self, transfer_id: str, message: str):
        super().__init__(message)
        self.transfer_id = transfer_id


class UnknownTransfer(ReassemblyError, KeyError):
    def __init__(self, transfer_id: str):
        super().__init__(transfer_id, f"Unknown transfer: {transfer_id}")

    def __str__(self) -> str:
        return self.args[0]


class TransferNotReady(ReassemblyError):
    def __init__(self, transfer_id: str):
        super().__init__(transfer_id, f"Transfer {transfer_id} has not completed yet")


class TransferFailed(ReassemblyError):
    def __init__(self, transfer_id: str, reason: str):
        super().__init__(transfer_id, f"Transfer {transfer_id} failed: {reason}")
        self.reason = reason


class IncompleteTransfer(ReassemblyError):
    """Completion arrived but sequence numbers are not contiguous from 0."""

    def __init__(self, transfer_id: str, expected_chunks: int,
                 received_chunks: int, missing: Optional[List[int]] = None):
        self.expected_chunks = expected_chunks
        self.received_chunks = received_chunks
        self.missing = list(missing or [])
        super().__init__(
            transfer_id,
            f"Transfer {transfer_id} is incomplete: got {received_chunks} of "
            f"{expected_chunks} chunks (missing {self.missing[:10]})"
        )
