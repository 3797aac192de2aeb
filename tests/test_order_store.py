import asyncio
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from orderflow.core.exceptions import (
    DuplicateKeyError,
    OrderNotFoundError,
    PreconditionFailedError,
    TransientStoreError,
)
from orderflow.models import EventType, OrderRecord, OrderStatus
from orderflow.services.store import InMemoryOrderStore, SqlOrderStore


def make_order(**overrides) -> OrderRecord:
    fields = dict(
        order_id=str(uuid.uuid4()),
        item="Chicken Biryani",
        restaurant="Paradise",
        customer_name="Mobile User",
        status=OrderStatus.PREPARING,
        created_at=datetime.now(timezone.utc),
    )
    fields.update(overrides)
    return OrderRecord(**fields)


@pytest.fixture(params=["memory", "sql"])
async def order_store(request, tmp_path):
    if request.param == "memory":
        s = InMemoryOrderStore(poll_interval=0.02)
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/orders.db")
        s = SqlOrderStore(engine, poll_interval=0.02)
    await s.start()
    yield s
    await s.close()


@pytest.mark.anyio
async def test_insert_then_get(order_store):
    order = make_order()
    await order_store.insert(order)

    stored = await order_store.get(order.order_id)
    assert stored == order
    assert stored.status == OrderStatus.PREPARING


@pytest.mark.anyio
async def test_duplicate_insert_rejected_without_second_event(order_store):
    order = make_order()
    await order_store.insert(order)

    with pytest.raises(DuplicateKeyError):
        await order_store.insert(make_order(order_id=order.order_id, item="Dosa"))

    events = await order_store.read_events(after=0, limit=10)
    assert [e.event_type for e in events] == [EventType.INSERT]
    assert (await order_store.get(order.order_id)).item == "Chicken Biryani"


@pytest.mark.anyio
async def test_get_unknown_order(order_store):
    with pytest.raises(OrderNotFoundError):
        await order_store.get(str(uuid.uuid4()))


@pytest.mark.anyio
async def test_conditional_update_applies_once(order_store):
    order = make_order()
    await order_store.insert(order)

    updated = await order_store.conditional_update(
        order.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
    )
    assert updated.status == OrderStatus.OUT_FOR_DELIVERY
    assert updated.updated_at is not None
    assert updated.created_at == order.created_at

    with pytest.raises(PreconditionFailedError) as exc_info:
        await order_store.conditional_update(
            order.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
        )
    assert exc_info.value.actual == "OUT_FOR_DELIVERY"
    assert (await order_store.get(order.order_id)).status == OrderStatus.OUT_FOR_DELIVERY


@pytest.mark.anyio
async def test_conditional_update_on_missing_order(order_store):
    with pytest.raises(PreconditionFailedError) as exc_info:
        await order_store.conditional_update(
            str(uuid.uuid4()), OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
        )
    assert exc_info.value.actual is None


@pytest.mark.anyio
async def test_feed_records_every_write_in_order(order_store):
    first, second = make_order(), make_order()
    await order_store.insert(first)
    await order_store.insert(second)
    await order_store.conditional_update(
        first.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
    )

    events = await order_store.read_events(after=0, limit=10)
    assert [(e.event_type, e.order.order_id) for e in events] == [
        (EventType.INSERT, first.order_id),
        (EventType.INSERT, second.order_id),
        (EventType.UPDATE, first.order_id),
    ]
    sequences = [e.sequence for e in events]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == 3
    assert events[0].order.status == OrderStatus.PREPARING
    assert events[2].order.status == OrderStatus.OUT_FOR_DELIVERY

    page = await order_store.read_events(after=events[0].sequence, limit=1)
    assert [e.sequence for e in page] == [events[1].sequence]


@pytest.mark.anyio
async def test_subscribe_replays_from_checkpoint(order_store):
    orders = [make_order() for _ in range(3)]
    for order in orders:
        await order_store.insert(order)

    feed = order_store.subscribe(after=0, batch_size=2)
    seen = [await asyncio.wait_for(feed.__anext__(), 1) for _ in range(3)]
    await feed.aclose()
    assert [e.order.order_id for e in seen] == [o.order_id for o in orders]

    replay = order_store.subscribe(after=seen[0].sequence)
    again = await asyncio.wait_for(replay.__anext__(), 1)
    await replay.aclose()
    assert again.order.order_id == orders[1].order_id


@pytest.mark.anyio
async def test_subscriber_receives_later_writes(order_store):
    feed = order_store.subscribe(after=0)

    async def next_event():
        return await feed.__anext__()

    pending = asyncio.create_task(next_event())
    await asyncio.sleep(0.05)
    assert not pending.done()

    order = make_order()
    await order_store.insert(order)

    event = await asyncio.wait_for(pending, 2)
    await feed.aclose()
    assert event.event_type == EventType.INSERT
    assert event.order.order_id == order.order_id


@pytest.mark.anyio
async def test_list_and_count_by_status(order_store):
    orders = [make_order() for _ in range(3)]
    for order in orders:
        await order_store.insert(order)
    await order_store.conditional_update(
        orders[0].order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
    )

    assert await order_store.count_orders() == 3
    assert await order_store.count_orders(OrderStatus.PREPARING) == 2
    delivered = await order_store.list_orders(OrderStatus.OUT_FOR_DELIVERY)
    assert [o.order_id for o in delivered] == [orders[0].order_id]
    assert len(await order_store.list_orders(limit=2)) == 2
    assert await order_store.health_check()


@pytest.mark.anyio
async def test_memory_conditional_update_is_atomic():
    store = InMemoryOrderStore()
    order = make_order()
    await store.insert(order)

    async def attempt():
        try:
            await store.conditional_update(
                order.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
            )
            return True
        except PreconditionFailedError:
            return False

    results = await asyncio.gather(*(attempt() for _ in range(20)))
    assert results.count(True) == 1
    updates = [e for e in await store.read_events(0, 100) if e.event_type == EventType.UPDATE]
    assert len(updates) == 1


@pytest.mark.anyio
async def test_memory_simulated_transient_failure_changes_nothing():
    store = InMemoryOrderStore()
    order = make_order()
    await store.insert(order)
    store.fail_next_updates(1)

    with pytest.raises(TransientStoreError):
        await store.conditional_update(
            order.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
        )
    assert (await store.get(order.order_id)).status == OrderStatus.PREPARING

    await store.conditional_update(
        order.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
    )


@pytest.mark.anyio
async def test_sql_connection_failure_is_transient(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/orders.db")
    store = SqlOrderStore(engine, create_tables=False)

    with pytest.raises(TransientStoreError):
        await store.get(str(uuid.uuid4()))
    assert not await store.health_check()
    await store.close()


@pytest.mark.anyio
async def test_latest_sequence_tracks_feed_head(order_store):
    assert await order_store.latest_sequence() == 0

    order = make_order()
    await order_store.insert(order)
    await order_store.conditional_update(
        order.order_id, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY
    )

    events = await order_store.read_events(after=0, limit=10)
    assert await order_store.latest_sequence() == events[-1].sequence
