"""
Status Transition Worker

Consumes the order store's change feed and moves each new order from
PREPARING to OUT_FOR_DELIVERY once its preparation delay has passed,
then asks the dispatcher to notify subscribers.

Per-order progress as seen by this worker:

    UNSEEN -> SCHEDULED -> TRANSITIONED
                       `-> FAILED (store retries exhausted)

Rules:
    - Only INSERT events whose payload status is PREPARING are scheduled.
      UPDATE events (including this worker's own writes) are ignored.
    - Every scheduled order runs in its own asyncio task, so the feed loop
      never waits on a delay.
    - The transition is a conditional update. PreconditionFailedError means
      another delivery of the same INSERT already won: the order counts as
      transitioned and nobody is notified again.
    - Transient store errors are retried with capped exponential backoff.
      After the last attempt the order is recorded as failed and left at
      PREPARING; other orders are unaffected.

Checkpointing:
    The saved position is the low-watermark of the feed: every event at or
    below it is fully handled. Orders still waiting hold it back, so after a
    crash their INSERT events are replayed. The due time is derived from the
    order's created_at, so a replayed order does not wait the full delay
    again.

Run standalone with ``python -m orderflow.worker``.
"""

import asyncio
import logging
import signal
from collections import OrderedDict
from dataclasses import dataclass, asdict
from datetime import timedelta
from enum import Enum
from typing import Optional

from orderflow.core.clock import Clock, SystemClock
from orderflow.core.config import Settings, StoreBackend, get_settings, setup_logging
from orderflow.core.exceptions import (
    NotificationError,
    PreconditionFailedError,
    TransientStoreError,
)
from orderflow.models import EventType, FeedEvent, OrderRecord, OrderStatus
from orderflow.services.checkpoints import (
    BaseCheckpointStore,
    MemoryCheckpointStore,
    create_checkpoint_store,
)
from orderflow.services.dispatcher import NotificationDispatcher
from orderflow.services.notifications import create_notification_service
from orderflow.services.store import BaseOrderStore, create_order_store

logger = logging.getLogger(__name__)


class OrderProgress(str, Enum):
    """Where an order stands from the worker's point of view."""
    UNSEEN = "unseen"
    SCHEDULED = "scheduled"
    TRANSITIONED = "transitioned"
    FAILED = "failed"


@dataclass
class WorkerStats:
    """Counters exposed on the health endpoint."""
    events_seen: int = 0
    events_ignored: int = 0
    duplicates_skipped: int = 0
    scheduled: int = 0
    transitioned: int = 0
    already_transitioned: int = 0
    failed: int = 0
    notifications_failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class StatusTransitionWorker:
    """
    Change-feed consumer driving PREPARING -> OUT_FOR_DELIVERY.

    Attributes:
        preparation_delay: Seconds between order creation and dispatch
        max_attempts: Conditional update attempts per order
        failures: order_id -> last error for orders that gave up
    """

    def __init__(
        self,
        store: BaseOrderStore,
        dispatcher: NotificationDispatcher,
        checkpoints: Optional[BaseCheckpointStore] = None,
        clock: Optional[Clock] = None,
        preparation_delay: float = 10.0,
        consumer_name: str = "status-transition-worker",
        batch_size: int = 100,
        max_attempts: int = 5,
        backoff_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
        feed_retry_seconds: float = 1.0,
        max_tracked_orders: int = 10_000,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.checkpoints = checkpoints or MemoryCheckpointStore()
        self.clock = clock or SystemClock()
        self.preparation_delay = preparation_delay
        self.consumer_name = consumer_name
        self.batch_size = batch_size
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.feed_retry_seconds = feed_retry_seconds
        self.max_tracked_orders = max_tracked_orders

        self.stats = WorkerStats()
        self.failures: dict[str, str] = {}
        self._progress: OrderedDict[str, OrderProgress] = OrderedDict()
        self._tasks: dict[str, asyncio.Task] = {}
        self._pending: set[int] = set()
        self._last_seen = 0
        self._committed = 0
        self._commit_lock = asyncio.Lock()
        self._consumer: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: BaseOrderStore,
        dispatcher: NotificationDispatcher,
        checkpoints: Optional[BaseCheckpointStore] = None,
        clock: Optional[Clock] = None,
    ) -> "StatusTransitionWorker":
        return cls(
            store,
            dispatcher,
            checkpoints=checkpoints or create_checkpoint_store(settings),
            clock=clock,
            preparation_delay=settings.preparation_delay_seconds,
            consumer_name=settings.feed_consumer_name,
            batch_size=settings.feed_batch_size,
            max_attempts=settings.transition_max_attempts,
            backoff_seconds=settings.transition_backoff_seconds,
            backoff_max_seconds=settings.transition_backoff_max_seconds,
        )

    # ==========================================================================
    # STATE
    # ==========================================================================

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def watermark(self) -> int:
        """Highest feed sequence at or below which everything is handled."""
        if self._pending:
            return min(self._pending) - 1
        return self._last_seen

    @property
    def committed_position(self) -> int:
        return self._committed

    def progress_of(self, order_id: str) -> OrderProgress:
        return self._progress.get(order_id, OrderProgress.UNSEEN)

    def _set_progress(self, order_id: str, progress: OrderProgress) -> None:
        self._progress[order_id] = progress
        self._progress.move_to_end(order_id)
        while len(self._progress) > self.max_tracked_orders:
            self._progress.popitem(last=False)

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def start(self) -> None:
        """Resume from the saved checkpoint and start consuming in the background."""
        if self.running:
            return
        position = await asyncio.to_thread(self.checkpoints.load, self.consumer_name)
        position = await self._check_position(position)
        self._last_seen = self._committed = position
        logger.info(f"Worker '{self.consumer_name}' resuming after feed sequence {position}")
        self._consumer = asyncio.create_task(self.run(), name=f"{self.consumer_name}-feed")

    async def _check_position(self, position: int) -> int:
        """Discard a saved position that lies beyond the store's feed head."""
        try:
            head = await self.store.latest_sequence()
        except TransientStoreError as e:
            logger.warning(f"Could not read feed head, trusting checkpoint {position}: {e}")
            return position

        if position > head:
            logger.warning(
                f"Checkpoint {position} is ahead of the feed head {head} "
                f"({self.store.provider_name}); replaying from the start"
            )
            await asyncio.to_thread(self.checkpoints.save, self.consumer_name, 0)
            return 0
        return position

    async def stop(self, drain: bool = False) -> None:
        """
        Stop consuming.

        With ``drain`` the armed timers run to completion; otherwise they are
        cancelled and their orders replay from the checkpoint next time.
        """
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        if drain:
            await self.drain()
        else:
            tasks = list(self._tasks.values())
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if tasks:
                logger.warning(f"Dropped {len(tasks)} armed timers; they replay on restart")

        await self.commit_checkpoint()
        logger.info(f"Worker stopped at feed sequence {self._committed}")

    async def drain(self) -> None:
        """Wait until every scheduled order has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def commit_checkpoint(self) -> None:
        """Persist the low-watermark if it moved forward."""
        async with self._commit_lock:
            position = self.watermark
            if position <= self._committed:
                return
            await asyncio.to_thread(self.checkpoints.save, self.consumer_name, position)
            self._committed = position

    # ==========================================================================
    # FEED LOOP
    # ==========================================================================

    async def run(self) -> None:
        """Consume the change feed until cancelled."""
        while True:
            try:
                async for event in self.store.subscribe(
                    after=self._last_seen,
                    batch_size=self.batch_size,
                ):
                    self.handle_event(event)
                    await self.commit_checkpoint()
            except TransientStoreError as e:
                logger.warning(f"Feed read failed, retrying in {self.feed_retry_seconds}s: {e}")
                await self.clock.sleep(self.feed_retry_seconds)
            except Exception:
                logger.exception("Unexpected error in feed loop")
                await self.clock.sleep(self.feed_retry_seconds)

    def handle_event(self, event: FeedEvent) -> Optional[OrderProgress]:
        """
        Route one feed event. Never blocks on the preparation delay.

        Returns:
            The order's progress after routing, or None for ignored events
        """
        self._last_seen = max(self._last_seen, event.sequence)
        self.stats.events_seen += 1
        order = event.order

        if event.event_type != EventType.INSERT or order.status != OrderStatus.PREPARING:
            self.stats.events_ignored += 1
            logger.debug(f"Ignoring {event.event_type.value} #{event.sequence} for {order.order_id}")
            return None

        if order.order_id in self._tasks:
            self.stats.duplicates_skipped += 1
            logger.debug(f"Order {order.order_id} already scheduled; duplicate #{event.sequence}")
            return OrderProgress.SCHEDULED

        self._pending.add(event.sequence)
        self._set_progress(order.order_id, OrderProgress.SCHEDULED)
        self.stats.scheduled += 1
        self._tasks[order.order_id] = asyncio.create_task(
            self._process(event),
            name=f"order-{order.order_id}",
        )
        logger.info(f"Order {order.order_id} scheduled (due in {self.remaining_delay(order):.1f}s)")
        return OrderProgress.SCHEDULED

    def remaining_delay(self, order: OrderRecord) -> float:
        """Seconds until ``order`` is due, never more than the full delay."""
        due = order.created_at + timedelta(seconds=self.preparation_delay)
        remaining = (due - self.clock.now()).total_seconds()
        return min(max(remaining, 0.0), self.preparation_delay)

    async def _process(self, event: FeedEvent) -> OrderProgress:
        order_id = event.order.order_id
        try:
            await self.clock.sleep(self.remaining_delay(event.order))
            outcome = await self.transition(event.order)
        except asyncio.CancelledError:
            # Sequence stays pending so the checkpoint cannot pass it
            self._tasks.pop(order_id, None)
            self._set_progress(order_id, OrderProgress.UNSEEN)
            raise

        self._tasks.pop(order_id, None)
        self._pending.discard(event.sequence)
        self._set_progress(order_id, outcome)
        try:
            await self.commit_checkpoint()
        except Exception:
            # The next commit carries this position forward
            logger.exception(f"Checkpoint commit failed after order {order_id}")
        return outcome

    # ==========================================================================
    # TRANSITION
    # ==========================================================================

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)

    async def transition(self, order: OrderRecord) -> OrderProgress:
        """
        Move ``order`` to OUT_FOR_DELIVERY and notify on success.

        Safe to call repeatedly for the same order: only the call that wins
        the conditional update notifies.
        """
        order_id = order.order_id
        last_error = "unknown error"

        for attempt in range(1, self.max_attempts + 1):
            try:
                updated = await self.store.conditional_update(
                    order_id,
                    expected_status=OrderStatus.PREPARING,
                    new_status=OrderStatus.OUT_FOR_DELIVERY,
                )
            except PreconditionFailedError as e:
                if e.actual is None:
                    logger.warning(f"Order {order_id} missing from store; nothing to transition")
                else:
                    logger.info(f"Order {order_id} already {e.actual}; skipping notification")
                self.stats.already_transitioned += 1
                return OrderProgress.TRANSITIONED
            except TransientStoreError as e:
                last_error = str(e)
                if attempt == self.max_attempts:
                    break
                delay = self._backoff(attempt)
                logger.warning(
                    f"Order {order_id}: transition attempt {attempt}/{self.max_attempts} "
                    f"failed ({e}); retrying in {delay:.2f}s"
                )
                await self.clock.sleep(delay)
                continue
            except Exception as e:
                last_error = str(e)
                logger.exception(f"Order {order_id}: unexpected error during transition")
                break

            self.stats.transitioned += 1
            logger.info(f"Order {order_id} is {updated.status.value}")
            await self._notify(updated)
            return OrderProgress.TRANSITIONED

        self.stats.failed += 1
        self.failures[order_id] = last_error
        logger.error(f"Order {order_id}: transition failed after {self.max_attempts} attempts - {last_error}")
        return OrderProgress.FAILED

    async def _notify(self, order: OrderRecord) -> None:
        try:
            await self.dispatcher.notify(order)
        except NotificationError as e:
            # The status change stands
            self.stats.notifications_failed += 1
            logger.error(str(e))


# =============================================================================
# STANDALONE ENTRYPOINT
# =============================================================================

async def serve(settings: Settings) -> None:
    """Run the worker until SIGINT/SIGTERM."""
    if settings.resolved_store_backend == StoreBackend.MEMORY:
        logger.warning("In-memory store: this worker only sees orders created in its own process")

    clock = SystemClock()
    store = create_order_store(settings, clock=clock)
    service = create_notification_service(settings)
    await store.start()

    dispatcher = NotificationDispatcher.from_settings(settings, service, clock=clock)
    worker = StatusTransitionWorker.from_settings(settings, store, dispatcher, clock=clock)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await worker.start()
    try:
        await stop_requested.wait()
    finally:
        logger.info("Shutting down worker...")
        await worker.stop()
        await service.close()
        await store.close()


def main() -> None:
    settings = get_settings()
    setup_logging()
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
