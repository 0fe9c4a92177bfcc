import pytest
from fastapi.testclient import TestClient

from roomdrop.api import create_app
from roomdrop.config import Config
from roomdrop.protocol import JoinRoom, PeerJoined, decode_frame, encode_frame


@pytest.fixture
def client():
    app = create_app(Config(max_pending_frames=16))
    with TestClient(app) as client:
        yield client


def join(ws, room='abc123'):
    ws.send_bytes(encode_frame(JoinRoom(room_token=room)))


def test_ping(client):
    response = client.get('/ping')
    assert response.status_code == 200
    assert response.text == 'pong'


def test_root(client):
    data = client.get('/').json()
    assert data['name'] == 'roomdrop relay'
    assert data['status'] == 'running'


def test_stats_start_empty(client):
    stats = client.get('/stats').json()
    assert stats['connections'] == 0
    assert stats['rooms'] == 0
    assert stats['frames_forwarded'] == 0


def test_relay_between_two_sockets(client, meta, chunk):
    with client.websocket_connect('/ws') as alice, client.websocket_connect('/ws') as bob:
        join(alice)
        join(bob)

        notice = decode_frame(alice.receive_bytes())
        assert isinstance(notice, PeerJoined)
        assert notice.room_token == 'abc123'

        meta_frame = encode_frame(meta(size=4))
        chunk_frame = encode_frame(chunk(0, b'\x00\x01\x02\x03'))
        alice.send_bytes(meta_frame)
        alice.send_bytes(chunk_frame)

        assert bob.receive_bytes() == meta_frame
        assert bob.receive_bytes() == chunk_frame

        stats = client.get('/stats').json()
        assert stats['connections'] == 2
        assert stats['rooms'] == 1
        assert stats['memberships'] == 2
        assert stats['frames_forwarded'] == 2


def test_garbage_and_text_frames_are_ignored(client, complete):
    with client.websocket_connect('/ws') as alice, client.websocket_connect('/ws') as bob:
        join(alice)
        join(bob)
        alice.receive_bytes()  # peer-joined for bob

        alice.send_text('hello?')
        alice.send_bytes(b'\xff\xff')
        frame = encode_frame(complete())
        alice.send_bytes(frame)

        # the first thing bob sees is the valid frame
        assert bob.receive_bytes() == frame
        assert client.get('/stats').json()['frames_dropped'] == 1


def test_rooms_are_isolated(client, meta):
    with client.websocket_connect('/ws') as alice, \
            client.websocket_connect('/ws') as bob, \
            client.websocket_connect('/ws') as carol:
        join(alice)
        join(carol, room='other')
        join(bob)
        alice.receive_bytes()  # peer-joined for bob

        alice.send_bytes(encode_frame(meta()))
        bob.receive_bytes()

        other = encode_frame(meta('t2', room_token='other'))
        bob.send_bytes(other)  # bob is not in 'other', carol is
        assert carol.receive_bytes() == other
