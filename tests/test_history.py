import pytest

from roomdrop.storage import DIRECTION_RECEIVED, DIRECTION_SENT, TransferHistory, open_history


@pytest.mark.asyncio
async def test_transfer_lifecycle(tmp_path):
    async with TransferHistory(tmp_path / 'history.db') as history:
        await history.start_transfer('t1', DIRECTION_SENT, 'abc123',
                                     name='doc.pdf', size=196608,
                                     mime_type='application/pdf')
        row = await history.get_transfer('t1', DIRECTION_SENT)
        assert row['status'] == 'in_progress'
        assert row['name'] == 'doc.pdf'

        await history.finish_transfer('t1', DIRECTION_SENT, 'completed',
                                      bytes_count=196608, chunks=3)
        row = await history.get_transfer('t1', DIRECTION_SENT)
        assert row['status'] == 'completed'
        assert row['bytes'] == 196608
        assert row['chunks'] == 3
        assert row['finished_at'] is not None


@pytest.mark.asyncio
async def test_same_id_both_directions(tmp_path):
    history = await open_history(tmp_path / 'data' / 'history.db')
    try:
        await history.start_transfer('t1', DIRECTION_SENT, 'abc123')
        await history.start_transfer('t1', DIRECTION_RECEIVED, 'abc123')
        await history.finish_transfer('t1', DIRECTION_RECEIVED, 'incomplete',
                                      detail='missing [2]')

        assert (await history.get_transfer('t1', DIRECTION_SENT))['status'] == 'in_progress'
        received = await history.get_transfer('t1', DIRECTION_RECEIVED)
        assert received['status'] == 'incomplete'
        assert received['detail'] == 'missing [2]'
    finally:
        await history.close()

    assert (tmp_path / 'data' / 'history.db').exists()


@pytest.mark.asyncio
async def test_restart_updates_metadata(tmp_path):
    async with TransferHistory(tmp_path / 'history.db') as history:
        await history.start_transfer('t1', DIRECTION_RECEIVED, 'abc123')
        await history.start_transfer('t1', DIRECTION_RECEIVED, 'abc123', name='late.bin', size=9)

        rows = await history.list_recent()
        assert len(rows) == 1
        assert rows[0]['name'] == 'late.bin'
        assert rows[0]['size'] == 9


@pytest.mark.asyncio
async def test_list_recent_newest_first(tmp_path):
    async with TransferHistory(tmp_path / 'history.db') as history:
        for n in range(5):
            await history.start_transfer(f't{n}', DIRECTION_SENT, 'abc123')

        rows = await history.list_recent(limit=3)
        assert [row['transfer_id'] for row in rows] == ['t4', 't3', 't2']
        assert await history.get_transfer('missing', DIRECTION_SENT) is None
