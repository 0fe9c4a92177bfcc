"""
Peer Module - Sending and Receiving Files

Client-side half of the protocol: the transport to the relay, the sender
chunker and the receiver reassembler.
"""

from .chunker import SenderChunker, FileSource, SendProgress, CHUNK_SIZE, new_transfer_id
from .reassembler import Reassembler, TransferRecord, TransferState, ReceivedFile
from .transport import WebSocketTransport
from .client import PeerClient, new_room_token

__all__ = [
    'SenderChunker',
    'FileSource',
    'SendProgress',
    'CHUNK_SIZE',
    'new_transfer_id',
    'Reassembler',
    'TransferRecord',
    'TransferState',
    'ReceivedFile',
    'WebSocketTransport',
    'PeerClient',
    'new_room_token',
]
