"""
SQL Order Store

Production implementation on SQLAlchemy's async engine (PostgreSQL via
psycopg; SQLite via aiosqlite in tests).

Change feed:
    The store writes an ``order_events`` outbox row in the same transaction
    as every insert or conditional update. The outbox primary key is the
    feed cursor, so subscribers page through it with ``sequence > :after``.
    On PostgreSQL, outbox writes take a transaction-scoped advisory lock so
    sequences become visible in commit order and a reader never skips a
    lower sequence that commits late.

Error mapping:
    - IntegrityError on insert -> DuplicateKeyError
    - Connection / operational errors -> TransientStoreError
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from orderflow.core.clock import Clock, SystemClock
from orderflow.core.exceptions import (
    DuplicateKeyError,
    OrderNotFoundError,
    PreconditionFailedError,
    TransientStoreError,
)
from orderflow.database import create_session_maker, init_db
from orderflow.models import (
    EventType,
    FeedEvent,
    Order,
    OrderEvent,
    OrderRecord,
    OrderStatus,
)
from orderflow.services.store.base import BaseOrderStore

logger = logging.getLogger(__name__)

# Arbitrary application-wide key for pg_advisory_xact_lock
OUTBOX_LOCK_KEY = 0x0F10


@contextmanager
def _store_errors(operation: str, order_id: Optional[str] = None) -> Iterator[None]:
    """Translate driver-level failures into TransientStoreError."""
    try:
        yield
    except (OperationalError, InterfaceError, ConnectionError, TimeoutError) as e:
        logger.warning(f"Store {operation} failed: {e}")
        raise TransientStoreError(f"{operation} failed: {e}", order_id=order_id) from e


class SqlOrderStore(BaseOrderStore):
    """Order store backed by a relational database."""

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Optional[Clock] = None,
        poll_interval: float = 0.5,
        create_tables: bool = True,
    ):
        super().__init__(poll_interval=poll_interval)
        self.engine = engine
        self.clock = clock or SystemClock()
        self.create_tables = create_tables
        self.session_maker = create_session_maker(engine)

        logger.info(f"SqlOrderStore initialized ({engine.dialect.name})")

    @property
    def provider_name(self) -> str:
        return f"sql:{self.engine.dialect.name}"

    async def start(self) -> None:
        if self.create_tables:
            with _store_errors("schema setup"):
                await init_db(self.engine)
            logger.info("Order tables ready")

    async def close(self) -> None:
        await self.engine.dispose()

    async def _append_event(
        self,
        session: AsyncSession,
        event_type: EventType,
        order: OrderRecord,
    ) -> None:
        if self.engine.dialect.name == "postgresql":
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": OUTBOX_LOCK_KEY},
            )
        session.add(OrderEvent(
            event_type=event_type,
            order_id=order.order_id,
            payload=order.to_payload(),
            recorded_at=self.clock.now(),
        ))

    async def insert(self, order: OrderRecord) -> OrderRecord:
        with _store_errors("insert", order.order_id):
            try:
                async with self.session_maker() as session:
                    async with session.begin():
                        session.add(Order(
                            order_id=order.order_id,
                            item=order.item,
                            restaurant=order.restaurant,
                            customer_name=order.customer_name,
                            status=order.status,
                            created_at=order.created_at,
                        ))
                        # Flush the order first so a duplicate id fails before
                        # the outbox row is written
                        await session.flush()
                        await self._append_event(session, EventType.INSERT, order)
            except IntegrityError as e:
                raise DuplicateKeyError(order.order_id) from e

        logger.debug(f"Order {order.order_id} inserted")
        return order

    async def get(self, order_id: str) -> OrderRecord:
        with _store_errors("get", order_id):
            async with self.session_maker() as session:
                row = await session.get(Order, order_id)

        if row is None:
            raise OrderNotFoundError(order_id)
        return row.to_record()

    async def conditional_update(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> OrderRecord:
        now = self.clock.now()

        with _store_errors("conditional update", order_id):
            async with self.session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Order)
                        .where(
                            Order.order_id == order_id,
                            Order.status == expected_status,
                        )
                        .values(status=new_status, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )

                    if result.rowcount == 0:
                        actual = await session.scalar(
                            select(Order.status).where(Order.order_id == order_id)
                        )
                        raise PreconditionFailedError(
                            order_id,
                            expected=expected_status.value,
                            actual=actual.value if actual is not None else None,
                        )

                    row = await session.get(Order, order_id, populate_existing=True)
                    updated = row.to_record()
                    await self._append_event(session, EventType.UPDATE, updated)

        logger.debug(f"Order {order_id}: {expected_status.value} -> {new_status.value}")
        return updated

    async def read_events(self, after: int, limit: int) -> list[FeedEvent]:
        with _store_errors("feed read"):
            async with self.session_maker() as session:
                result = await session.execute(
                    select(OrderEvent)
                    .where(OrderEvent.sequence > after)
                    .order_by(OrderEvent.sequence)
                    .limit(limit)
                )
                rows = result.scalars().all()

        return [row.to_event() for row in rows]

    async def latest_sequence(self) -> int:
        with _store_errors("feed head"):
            async with self.session_maker() as session:
                latest = await session.scalar(select(func.max(OrderEvent.sequence)))

        return latest or 0

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> list[OrderRecord]:
        query = select(Order).order_by(Order.created_at.desc())
        if status is not None:
            query = query.where(Order.status == status)

        with _store_errors("list"):
            async with self.session_maker() as session:
                result = await session.execute(query.offset(offset).limit(limit))
                rows = result.scalars().all()

        return [row.to_record() for row in rows]

    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        query = select(func.count(Order.order_id))
        if status is not None:
            query = query.where(Order.status == status)

        with _store_errors("count"):
            async with self.session_maker() as session:
                total = await session.scalar(query)

        return total or 0

    async def health_check(self) -> bool:
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
