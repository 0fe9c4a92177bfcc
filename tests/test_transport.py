import pytest

from roomdrop.peer import PeerClient, WebSocketTransport
from roomdrop.protocol import JoinRoom, MessageKind, PeerJoined, encode_frame


@pytest.mark.asyncio
async def test_send_requires_connection():
    transport = WebSocketTransport('ws://localhost:1/ws')
    with pytest.raises(ConnectionError):
        await transport.send(JoinRoom(room_token='abc123'))
    assert not transport.is_connected


@pytest.mark.asyncio
async def test_run_requires_connection():
    with pytest.raises(ConnectionError):
        await WebSocketTransport('ws://localhost:1/ws').run()


@pytest.mark.asyncio
async def test_frames_dispatch_by_kind(meta):
    transport = WebSocketTransport('ws://localhost:1/ws')
    seen = []

    @transport.on(MessageKind.PEER_JOINED)
    async def handle_peer(message):
        seen.append(message)

    await transport._dispatch(encode_frame(PeerJoined(peer_id='conn-2')))
    await transport._dispatch(encode_frame(meta()))  # no handler, ignored

    assert seen == [PeerJoined(peer_id='conn-2')]
    assert transport.frames_received == 2


@pytest.mark.asyncio
async def test_malformed_frames_are_skipped():
    transport = WebSocketTransport('ws://localhost:1/ws', max_frame_bytes=64)
    called = []

    async def handler(message):
        called.append(message)

    transport.set_handler(MessageKind.FILE_CHUNK, handler)
    await transport._dispatch(b'\x00\x00\x00\x09not json!')
    await transport._dispatch(b'x' * 65)

    assert called == []
    assert transport.frames_skipped == 2
    assert transport.get_stats()['frames_received'] == 0


@pytest.mark.asyncio
async def test_disconnect_callbacks_fire_once():
    transport = WebSocketTransport('ws://localhost:1/ws')
    calls = []

    async def on_lost(error):
        calls.append(error)

    transport.on_disconnect(on_lost)
    await transport.close()
    await transport.close()
    await transport.wait_closed()

    assert calls == [None]


class ScriptedSocket:
    """Yields a fixed list of frames, then ends like a cleanly closed socket."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.closed = False

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame

    async def send(self, data):
        pass

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_receiving(meta, chunk, complete):
    socket = ScriptedSocket([
        encode_frame(meta('t1')),
        encode_frame(chunk(0, b'first', transfer_id='t1')),
        encode_frame(complete('t1')),
        encode_frame(meta('t2', name='b.bin')),
        encode_frame(chunk(0, b'second', transfer_id='t2')),
        encode_frame(complete('t2')),
    ])
    transport = WebSocketTransport('ws://localhost:1/ws')
    transport._ws = socket
    client = PeerClient(transport)
    ready = []
    lost = []

    async def save(record):
        ready.append(record.transfer_id)
        if record.transfer_id == 't1':
            raise PermissionError('output dir not writable')

    async def on_lost(error):
        lost.append(error)

    client.on_file_ready(save)
    transport.on_disconnect(on_lost)

    await transport.run()

    assert ready == ['t1', 't2']
    assert transport.handler_errors == 1
    assert client.reassembler.retrieve('t2').data == b'second'
    assert socket.closed
    assert lost == [None]
