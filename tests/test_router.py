import pytest

from roomdrop.protocol import (
    JoinRoom, LeaveRoom, PeerJoined, decode_frame, encode_frame,
)
from roomdrop.relay import ConnectionManager, PeerOutbox, RelayRouter, RoomRegistry


def drain(outbox):
    """Frames currently queued in an outbox."""
    frames = []
    while outbox.pending:
        frames.append(outbox._queue.get_nowait())
    return frames


@pytest.fixture
def relay():
    connections = ConnectionManager(RoomRegistry())
    router = RelayRouter(connections, max_frame_bytes=1024 * 1024)

    def connect(*connection_ids, max_pending=16):
        outboxes = []
        for connection_id in connection_ids:
            outbox = PeerOutbox(connection_id, max_pending=max_pending)
            connections.connect(connection_id, outbox)
            outboxes.append(outbox)
        return outboxes

    return router, connections, connect


async def join(router, connection_id, room='abc123'):
    await router.route(connection_id, encode_frame(JoinRoom(room_token=room)))


@pytest.mark.asyncio
async def test_join_announces_newcomer_to_existing_members(relay):
    router, connections, connect = relay
    a, b = connect('a', 'b')

    await join(router, 'a')
    assert drain(a) == []

    await join(router, 'b')
    frames = drain(a)
    assert len(frames) == 1
    assert decode_frame(frames[0]) == PeerJoined(peer_id='b', room_token='abc123')
    assert drain(b) == []


@pytest.mark.asyncio
async def test_repeated_join_announces_nothing(relay):
    router, connections, connect = relay
    a, b = connect('a', 'b')
    await join(router, 'a')
    await join(router, 'b')
    drain(a)

    await join(router, 'b')

    assert drain(a) == []
    assert await connections.registry.members('abc123') == {'a', 'b'}


@pytest.mark.asyncio
async def test_fan_out_excludes_sender(relay, meta):
    router, connections, connect = relay
    a, b, c = connect('a', 'b', 'c')
    for conn in ('a', 'b', 'c'):
        await join(router, conn)
    for outbox in (a, b, c):
        drain(outbox)

    frame = encode_frame(meta())
    delivered = await router.route('a', frame)

    assert delivered == 2
    assert drain(a) == []
    assert drain(b) == [frame]
    assert drain(c) == [frame]


@pytest.mark.asyncio
async def test_frames_are_forwarded_verbatim(relay, raw_frame):
    router, connections, connect = relay
    a, b = connect('a', 'b')
    await join(router, 'a')
    await join(router, 'b')
    drain(a)

    # legacy field names and an unknown extra field survive the relay untouched
    frame = raw_frame(
        {'kind': 'file-chunk', 'roomId': 'abc123', 'fileId': 't1', 'seq': 0, 'extra': 1},
        b'payload',
    )
    assert await router.route('a', frame) == 1
    assert drain(b) == [frame]


@pytest.mark.asyncio
async def test_empty_room_fan_out_is_silent(relay, chunk):
    router, connections, connect = relay
    (a,) = connect('a')
    await join(router, 'a')

    assert await router.route('a', encode_frame(chunk(0, b'data'))) == 0
    assert drain(a) == []
    assert router.frames_forwarded == 0


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped_silently(relay, raw_frame):
    router, connections, connect = relay
    a, b = connect('a', 'b')
    await join(router, 'a')
    await join(router, 'b')
    drain(a)

    assert await router.route('a', b'\x00garbage') == 0
    assert await router.route('a', raw_frame({'kind': 'file-meta', 'transferId': 't1'})) == 0
    assert await router.route('a', raw_frame({'kind': 'file-chunk', 'roomToken': 'abc123'})) == 0

    assert drain(a) == []
    assert drain(b) == []
    assert router.frames_dropped == 3


@pytest.mark.asyncio
async def test_peer_joined_from_a_peer_is_not_relayed(relay):
    router, connections, connect = relay
    a, b = connect('a', 'b')
    await join(router, 'a')
    await join(router, 'b')
    drain(a)

    frame = encode_frame(PeerJoined(peer_id='spoofed', room_token='abc123'))
    assert await router.route('a', frame) == 0
    assert drain(b) == []


@pytest.mark.asyncio
async def test_leave_stops_delivery(relay, complete):
    router, connections, connect = relay
    a, b = connect('a', 'b')
    await join(router, 'a')
    await join(router, 'b')
    drain(a)

    await router.route('b', encode_frame(LeaveRoom(room_token='abc123')))

    assert await router.route('a', encode_frame(complete())) == 0
    assert drain(b) == []


@pytest.mark.asyncio
async def test_disconnect_cleanup(relay, meta):
    router, connections, connect = relay
    a, b, c = connect('a', 'b', 'c')
    await join(router, 'a')
    await join(router, 'b')
    await join(router, 'b', room='other')
    await join(router, 'c')
    drain(a)
    drain(b)

    rooms = await connections.disconnect('b')

    assert sorted(rooms) == ['abc123', 'other']
    assert await connections.registry.rooms_of('b') == set()
    assert connections.registry.room_count == 1
    assert b.closed

    frame = encode_frame(meta())
    assert await router.route('a', frame) == 1
    assert drain(c) == [frame]


@pytest.mark.asyncio
async def test_overflowing_peer_is_cut_off_without_blocking_others(relay, chunk):
    router, connections, connect = relay
    a, slow, fast = connect('a', 'slow', 'fast', max_pending=2)
    for conn in ('a', 'slow', 'fast'):
        await join(router, conn)
    drain(a)
    drain(slow)

    for seq in range(3):
        await router.route('a', encode_frame(chunk(seq, b'x')))
        # the fast peer's writer keeps up
        assert len(drain(fast)) == 1

    assert slow.overflowed
    assert slow.closed
    assert await slow.get() is None


def test_outbox_refuses_frames_after_close():
    outbox = PeerOutbox('a', max_pending=4)
    assert outbox.deliver(b'one')
    outbox.close()
    assert not outbox.deliver(b'two')
    assert outbox.pending == 1  # only the close sentinel


@pytest.mark.asyncio
async def test_stats(relay, meta):
    router, connections, connect = relay
    connect('a', 'b')
    await join(router, 'a')
    await join(router, 'b')
    frame = encode_frame(meta())
    await router.route('a', frame)

    stats = {**connections.get_stats(), **router.get_stats()}
    assert stats['connections'] == 2
    assert stats['rooms'] == 1
    assert stats['memberships'] == 2
    assert stats['frames_routed'] == 3
    assert stats['frames_forwarded'] == 1
    assert stats['bytes_relayed'] == len(frame)
