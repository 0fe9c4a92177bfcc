"""
Relay Protocol Messages

Design Decision: Message Model
==============================

Options Considered:
1. Plain dicts checked field-by-field in each handler
   - What browser socket code usually does
   - Every handler re-validates, easy to forget a field

2. One dataclass per kind with hand-written validation
   - Typed, but validation code grows with every field

3. Pydantic models as a discriminated union on "kind"
   - One parse step at the boundary, typed afterwards
   - Aliases keep camelCase wire names and snake_case attributes

Decision: Pydantic discriminated union
- The relay validates a frame once, then routes on the message type
- Peers get the same typed objects from the same decoder

Frame Format (one WebSocket binary message per protocol message):
```
+----------------------+---------------------+------------------+
| Header length (4B)   | Header (JSON)       | Payload (binary) |
+----------------------+---------------------+------------------+

Header JSON:
{
    "kind": "join-room" | "leave-room" | "peer-joined" |
            "file-meta" | "file-chunk" | "file-complete",
    "roomToken": "...",
    "transferId": "...",
    ...
}
```

Only file-chunk frames carry a payload. The legacy field names roomId,
fileId, seq and type are accepted on input; output always uses the names
above.
"""

import json
import struct
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import MalformedFrame

HEADER_LENGTH = struct.Struct('>I')


class MessageKind(str, Enum):
    """Protocol message kinds."""
    # Membership
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    PEER_JOINED = "peer-joined"

    # Transfer
    FILE_META = "file-meta"
    FILE_CHUNK = "file-chunk"
    FILE_COMPLETE = "file-complete"


# Kinds the relay forwards to the other members of a room
RELAYED_KINDS = frozenset({
    MessageKind.FILE_META,
    MessageKind.FILE_CHUNK,
    MessageKind.FILE_COMPLETE,
})


def _wire(name: str, *accepted: str, **kwargs):
    """Field serialized as `name` and also parsed from the `accepted` aliases."""
    return Field(
        validation_alias=AliasChoices(name, *accepted),
        serialization_alias=name,
        **kwargs
    )


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore', frozen=True)

    @property
    def message_kind(self) -> MessageKind:
        return MessageKind(self.kind)


class JoinRoom(_Message):
    kind: Literal["join-room"] = "join-room"
    room_token: str = _wire('roomToken', 'roomId', min_length=1)


class LeaveRoom(_Message):
    kind: Literal["leave-room"] = "leave-room"
    room_token: str = _wire('roomToken', 'roomId', min_length=1)


class PeerJoined(_Message):
    """Sent by the relay only. Advisory."""
    kind: Literal["peer-joined"] = "peer-joined"
    peer_id: str = _wire('peerId', 'peerConnectionId')
    room_token: Optional[str] = _wire('roomToken', 'roomId', default=None)


class FileMeta(_Message):
    kind: Literal["file-meta"] = "file-meta"
    room_token: str = _wire('roomToken', 'roomId', min_length=1)
    transfer_id: str = _wire('transferId', 'fileId', min_length=1)
    name: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = _wire('mimeType', 'type', 'mime_type', default=None)


class FileChunk(_Message):
    kind: Literal["file-chunk"] = "file-chunk"
    room_token: str = _wire('roomToken', 'roomId', min_length=1)
    transfer_id: str = _wire('transferId', 'fileId', min_length=1)
    sequence_number: int = _wire('sequenceNumber', 'seq', ge=0)
    payload: bytes = Field(default=b'', exclude=True, repr=False)


class FileComplete(_Message):
    kind: Literal["file-complete"] = "file-complete"
    room_token: str = _wire('roomToken', 'roomId', min_length=1)
    transfer_id: str = _wire('transferId', 'fileId', min_length=1)


Message = Annotated[
    Union[JoinRoom, LeaveRoom, PeerJoined, FileMeta, FileChunk, FileComplete],
    Field(discriminator='kind'),
]

_message_adapter: TypeAdapter = TypeAdapter(Message)


def encode_frame(message: _Message) -> bytes:
    """Serialize a message to a single binary frame."""
    header = message.model_dump(by_alias=True, exclude_none=True)
    header_bytes = json.dumps(header, separators=(',', ':')).encode('utf-8')
    payload = message.payload if isinstance(message, FileChunk) else b''
    return HEADER_LENGTH.pack(len(header_bytes)) + header_bytes + payload


def decode_frame(frame: bytes, max_size: Optional[int] = None) -> Message:
    """
    Parse a binary frame into a typed message.

    Raises:
        MalformedFrame: if the frame is truncated, too large, or its header
            does not describe a valid message
    """
    if max_size is not None and len(frame) > max_size:
        raise MalformedFrame(f"Frame too large: {len(frame)} > {max_size}")

    if len(frame) < HEADER_LENGTH.size:
        raise MalformedFrame(f"Frame too short: {len(frame)} bytes")

    (header_length,) = HEADER_LENGTH.unpack_from(frame)
    header_end = HEADER_LENGTH.size + header_length
    if header_end > len(frame):
        raise MalformedFrame(
            f"Header length {header_length} exceeds frame size {len(frame)}"
        )

    try:
        header = json.loads(frame[HEADER_LENGTH.size:header_end].decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedFrame(f"Invalid header: {e}") from e

    if not isinstance(header, dict):
        raise MalformedFrame("Header is not a JSON object")

    if header.get('kind') == MessageKind.FILE_CHUNK.value:
        header['payload'] = bytes(frame[header_end:])
    else:
        header.pop('payload', None)

    try:
        return _message_adapter.validate_python(header)
    except ValidationError as e:
        raise MalformedFrame(
            f"Invalid {header.get('kind', 'unknown')} message: "
            f"{e.error_count()} validation error(s)"
        ) from e
