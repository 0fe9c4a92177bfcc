import json
import struct

import pytest

from roomdrop.protocol import FileChunk, FileComplete, FileMeta


class RecordingTransport:
    """In-memory stand-in for WebSocketTransport."""

    def __init__(self, fail_after=None):
        self.sent = []
        self.handlers = {}
        self.disconnect_callbacks = []
        self.fail_after = fail_after

    async def send(self, message):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise ConnectionError("relay went away")
        self.sent.append(message)

    def set_handler(self, kind, handler):
        self.handlers[kind] = handler

    def on_disconnect(self, callback):
        self.disconnect_callbacks.append(callback)

    async def deliver(self, message):
        handler = self.handlers.get(message.message_kind)
        if handler:
            await handler(message)

    async def drop(self, error=None):
        for callback in self.disconnect_callbacks:
            await callback(error)


@pytest.fixture
def make_transport():
    return RecordingTransport


@pytest.fixture
def raw_frame():
    """Build a frame from an arbitrary header dict, bypassing validation."""
    def build(header, payload=b''):
        header_bytes = json.dumps(header).encode('utf-8')
        return struct.pack('>I', len(header_bytes)) + header_bytes + payload
    return build


@pytest.fixture
def meta():
    def build(transfer_id='t1', room_token='abc123', name='doc.pdf',
              size=None, mime_type='application/pdf'):
        return FileMeta(room_token=room_token, transfer_id=transfer_id,
                        name=name, size=size, mime_type=mime_type)
    return build


@pytest.fixture
def chunk():
    def build(sequence_number, payload, transfer_id='t1', room_token='abc123'):
        return FileChunk(room_token=room_token, transfer_id=transfer_id,
                         sequence_number=sequence_number, payload=payload)
    return build


@pytest.fixture
def complete():
    def build(transfer_id='t1', room_token='abc123'):
        return FileComplete(room_token=room_token, transfer_id=transfer_id)
    return build
