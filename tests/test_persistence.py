from datetime import timedelta

import pytest

from firefly_cardano.chain import BlockInfo
from firefly_cardano.operations import Operation, OperationStatus
from firefly_cardano.persistence import (
    ApiError,
    BlockRecord,
    ConflictError,
    EventFilter,
    Listener,
    MockPersistence,
    NotFoundError,
    PersistenceConfig,
    StreamCheckpoint,
    Stream,
    init_persistence,
)


def make_stream(stream_id="s1", name="first"):
    return Stream(id=stream_id, name=name, batch_size=50, batch_timeout=timedelta(milliseconds=500))


def make_listener(listener_id="l1", stream_id="s1"):
    return Listener(
        id=listener_id,
        name=f"listener {listener_id}",
        stream_id=stream_id,
        filters=[EventFilter(contract="c1", event_path="Created(string, number)")],
    )


@pytest.mark.asyncio
async def test_stream_round_trip_and_update():
    store = MockPersistence()
    stream = make_stream()
    await store.write_stream(stream)
    assert await store.read_stream("s1") == stream
    renamed = make_stream(name="renamed")
    await store.write_stream(renamed)
    assert await store.read_stream("s1") == renamed
    assert len(await store.list_streams(None, None)) == 1


@pytest.mark.asyncio
async def test_stream_name_conflict():
    store = MockPersistence()
    await store.write_stream(make_stream("s1", "dup"))
    with pytest.raises(ConflictError) as info:
        await store.write_stream(make_stream("s2", "dup"))
    assert info.value.status_code == 409
    assert await store.read_stream("s2") is None


@pytest.mark.asyncio
async def test_stored_stream_is_a_copy():
    store = MockPersistence()
    stream = make_stream()
    await store.write_stream(stream)
    stream.name = "changed"
    assert (await store.read_stream("s1")).name == "first"


@pytest.mark.asyncio
async def test_list_streams_after_and_limit():
    store = MockPersistence()
    for sid in ("a", "b", "c"):
        await store.write_stream(make_stream(sid, sid))
    after_a = await store.list_streams("a", None)
    assert [s.id for s in after_a] == ["b", "c"]
    limited = await store.list_streams(None, 2)
    assert [s.id for s in limited] == ["a", "b"]


@pytest.mark.asyncio
async def test_delete_stream_removes_listeners_and_checkpoint():
    store = MockPersistence()
    await store.write_stream(make_stream())
    await store.write_listener(make_listener())
    await store.write_checkpoint(StreamCheckpoint(stream_id="s1", last_operation_id="op"))
    await store.delete_stream("s1")
    assert await store.read_stream("s1") is None
    assert await store.read_checkpoint("s1") is None
    with pytest.raises(NotFoundError):
        await store.list_listeners("s1", None, None)


@pytest.mark.asyncio
async def test_listener_requires_stream():
    store = MockPersistence()
    with pytest.raises(NotFoundError) as info:
        await store.write_listener(make_listener())
    assert isinstance(info.value, ApiError)
    assert info.value.status_code == 404
    with pytest.raises(NotFoundError):
        await store.read_listener("s1", "l1")


@pytest.mark.asyncio
async def test_listener_round_trip_and_listing():
    store = MockPersistence()
    await store.write_stream(make_stream())
    for lid in ("l1", "l2", "l3"):
        await store.write_listener(make_listener(lid))
    assert await store.read_listener("s1", "l2") == make_listener("l2")
    assert await store.read_listener("s1", "missing") is None
    listed = await store.list_listeners("s1", "l1", 1)
    assert [l.id for l in listed] == ["l2"]


@pytest.mark.asyncio
async def test_delete_listener_clears_history():
    store = MockPersistence()
    await store.write_stream(make_stream())
    await store.write_listener(make_listener())
    await store.save_block_records("l1", [BlockRecord(BlockInfo(block_hash="aa"))])
    await store.delete_listener("s1", "l1")
    assert await store.read_listener("s1", "l1") is None
    assert await store.load_history("l1") == []
    await store.delete_listener("unknown", "l1")
    assert await store.read_stream("s1") == make_stream()


@pytest.mark.asyncio
async def test_checkpoint_requires_stream():
    store = MockPersistence()
    with pytest.raises(NotFoundError):
        await store.write_checkpoint(StreamCheckpoint(stream_id="s1"))
    await store.write_stream(make_stream())
    checkpoint = StreamCheckpoint(stream_id="s1", last_operation_id="op1", listeners={"l1": {}})
    await store.write_checkpoint(checkpoint)
    assert await store.read_checkpoint("s1") == checkpoint


@pytest.mark.asyncio
async def test_block_records_keyed_by_hash():
    store = MockPersistence()
    first = BlockRecord(BlockInfo(block_hash="aa", block_height=1))
    second = BlockRecord(BlockInfo(block_hash="bb", block_height=2))
    await store.save_block_records("l1", [first, second])
    replaced = BlockRecord(BlockInfo(block_hash="aa", block_height=1), rolled_back=True)
    await store.save_block_records("l1", [replaced])
    history = await store.load_history("l1")
    assert history == [replaced, second]
    assert await store.load_history("other") == []


@pytest.mark.asyncio
async def test_operations_and_updates():
    store = MockPersistence()
    assert await store.latest_operation_update() is None
    op = Operation(id="op1", status=OperationStatus.pending())
    first = await store.write_operation(op)
    op.status = OperationStatus.succeeded()
    second = await store.write_operation(op)
    assert len(first) == 26
    assert first < second
    assert await store.latest_operation_update() == second
    assert (await store.read_operation("op1")).status == OperationStatus.succeeded()
    assert await store.read_operation("missing") is None

    updates = await store.list_operation_updates(None, 10)
    assert [u.update_id for u in updates] == [first, second]
    assert updates[0].operation.status == OperationStatus.pending()
    newer = await store.list_operation_updates(first, 10)
    assert [u.update_id for u in newer] == [second]
    assert len(await store.list_operation_updates(None, 1)) == 1


def test_config_validation():
    assert PersistenceConfig().type == "mock"
    with pytest.raises(ValueError):
        PersistenceConfig(type="postgres")
    with pytest.raises(ValueError):
        PersistenceConfig(type="sqlite")


@pytest.mark.asyncio
async def test_init_mock_persistence():
    store = await init_persistence(PersistenceConfig())
    assert isinstance(store, MockPersistence)
    await store.write_stream(make_stream())
    assert await store.read_stream("s1") == make_stream()