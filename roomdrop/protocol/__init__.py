"""
Protocol Module - Wire Messages

Typed messages and the binary frame codec shared by the relay and peers.
"""

from .messages import (
    MessageKind, Message, RELAYED_KINDS,
    JoinRoom, LeaveRoom, PeerJoined,
    FileMeta, FileChunk, FileComplete,
    encode_frame, decode_frame,
)

__all__ = [
    'MessageKind',
    'Message',
    'RELAYED_KINDS',
    'JoinRoom',
    'LeaveRoom',
    'PeerJoined',
    'FileMeta',
    'FileChunk',
    'FileComplete',
    'encode_frame',
    'decode_frame',
]
