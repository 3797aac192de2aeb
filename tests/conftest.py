import asyncio
import time

import pytest
from httpx import ASGITransport, AsyncClient

from orderflow.core.config import Settings, get_settings
from orderflow.main import create_app, lifespan
from orderflow.services.checkpoints import MemoryCheckpointStore
from orderflow.services.dispatcher import NotificationDispatcher
from orderflow.services.notifications.mock import MockNotificationService
from orderflow.services.store.memory import InMemoryOrderStore
from orderflow.worker import StatusTransitionWorker

PREPARATION_DELAY = 0.2


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env_mode="development",
        preparation_delay_seconds=PREPARATION_DELAY,
        feed_checkpoint_path=None,
        feed_poll_interval_seconds=0.02,
        transition_backoff_seconds=0.0,
        notification_backoff_seconds=0.0,
        run_worker_in_api=True,
    )


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore(poll_interval=0.02)


@pytest.fixture
def notifications() -> MockNotificationService:
    return MockNotificationService()


@pytest.fixture
def checkpoints() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def dispatcher(notifications) -> NotificationDispatcher:
    return NotificationDispatcher(notifications, topic="order-status-updates", backoff_seconds=0.0)


@pytest.fixture
def worker(store, dispatcher, checkpoints) -> StatusTransitionWorker:
    return StatusTransitionWorker(
        store,
        dispatcher,
        checkpoints=checkpoints,
        preparation_delay=PREPARATION_DELAY,
        max_attempts=3,
        backoff_seconds=0.0,
        feed_retry_seconds=0.01,
    )


@pytest.fixture
async def app(settings, store, notifications, checkpoints):
    application = create_app(
        settings=settings,
        store=store,
        notification_service=notifications,
        checkpoints=checkpoints,
    )
    async with lifespan(application):
        yield application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def wait_for_status(client: AsyncClient, order_id: str, status: str, timeout: float = 5.0) -> dict:
    """Poll GET /order/{id} until ``status`` is reached."""
    deadline = time.monotonic() + timeout
    seen = set()
    while True:
        response = await client.get(f"/order/{order_id}")
        assert response.status_code == 200
        body = response.json()
        seen.add(body["status"])
        if body["status"] == status:
            body["_seen"] = seen
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"order {order_id} stuck at {body['status']}")
        await asyncio.sleep(0.02)
