import json
import struct

import pytest

from roomdrop.errors import MalformedFrame
from roomdrop.protocol import (
    FileChunk, FileComplete, FileMeta, JoinRoom, LeaveRoom, MessageKind, PeerJoined,
    decode_frame, encode_frame,
)


def header_of(frame):
    (length,) = struct.unpack('>I', frame[:4])
    return json.loads(frame[4:4 + length])


def test_join_frame_uses_wire_names():
    frame = encode_frame(JoinRoom(room_token='abc123'))
    assert header_of(frame) == {'kind': 'join-room', 'roomToken': 'abc123'}
    assert decode_frame(frame) == JoinRoom(room_token='abc123')


def test_chunk_payload_travels_after_header():
    payload = bytes(range(256)) * 4
    frame = encode_frame(FileChunk(
        room_token='abc123', transfer_id='t1', sequence_number=7, payload=payload
    ))

    header = header_of(frame)
    assert header == {
        'kind': 'file-chunk', 'roomToken': 'abc123',
        'transferId': 't1', 'sequenceNumber': 7,
    }
    assert frame.endswith(payload)

    message = decode_frame(frame)
    assert isinstance(message, FileChunk)
    assert message.sequence_number == 7
    assert message.payload == payload
    assert message.message_kind is MessageKind.FILE_CHUNK


def test_meta_omits_absent_fields():
    frame = encode_frame(FileMeta(room_token='abc123', transfer_id='t1'))
    assert header_of(frame) == {'kind': 'file-meta', 'roomToken': 'abc123', 'transferId': 't1'}


def test_legacy_field_names_are_accepted(raw_frame):
    message = decode_frame(raw_frame({
        'kind': 'file-meta', 'roomId': 'abc123', 'fileId': 't1',
        'name': 'doc.pdf', 'size': 196608, 'type': 'application/pdf',
    }))
    assert isinstance(message, FileMeta)
    assert message.room_token == 'abc123'
    assert message.transfer_id == 't1'
    assert message.mime_type == 'application/pdf'

    chunk = decode_frame(raw_frame(
        {'kind': 'file-chunk', 'roomId': 'abc123', 'fileId': 't1', 'seq': 3}, b'xyz'
    ))
    assert chunk.sequence_number == 3
    assert chunk.payload == b'xyz'


def test_payload_on_non_chunk_frames_is_ignored(raw_frame):
    message = decode_frame(raw_frame(
        {'kind': 'file-complete', 'roomToken': 'abc123', 'transferId': 't1'}, b'junk'
    ))
    assert message == FileComplete(room_token='abc123', transfer_id='t1')


def test_peer_joined_room_token_optional():
    message = decode_frame(encode_frame(PeerJoined(peer_id='conn-1')))
    assert message.peer_id == 'conn-1'
    assert message.room_token is None


@pytest.mark.parametrize('frame', [
    b'',
    b'\x00\x00',
    struct.pack('>I', 100) + b'{}',
    struct.pack('>I', 5) + b'nope!',
    struct.pack('>I', 2) + b'[]',
])
def test_broken_frames_are_rejected(frame):
    with pytest.raises(MalformedFrame):
        decode_frame(frame)


@pytest.mark.parametrize('header', [
    {'kind': 'file-shred', 'roomToken': 'abc123'},
    {'roomToken': 'abc123'},
    {'kind': 'file-meta', 'transferId': 't1'},
    {'kind': 'file-meta', 'roomToken': '', 'transferId': 't1'},
    {'kind': 'file-chunk', 'roomToken': 'abc123', 'sequenceNumber': 0},
    {'kind': 'file-chunk', 'roomToken': 'abc123', 'transferId': 't1', 'sequenceNumber': -1},
    {'kind': 'file-meta', 'roomToken': 'abc123', 'transferId': 't1', 'size': -5},
    {'kind': 'join-room'},
])
def test_invalid_headers_are_rejected(raw_frame, header):
    with pytest.raises(MalformedFrame):
        decode_frame(raw_frame(header))


def test_oversized_frame_is_rejected():
    frame = encode_frame(FileChunk(
        room_token='abc123', transfer_id='t1', sequence_number=0, payload=b'x' * 2048
    ))
    with pytest.raises(MalformedFrame):
        decode_frame(frame, max_size=1024)
    assert decode_frame(frame, max_size=len(frame)).payload == b'x' * 2048


def test_leave_room_round_trip():
    assert decode_frame(encode_frame(LeaveRoom(room_token='r'))) == LeaveRoom(room_token='r')
