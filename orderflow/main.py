"""
FastAPI Application Entry Point

Order Lifecycle Service - order ingress plus the embedded status worker.

Endpoints:
    - POST /order: Create an order (status PREPARING)
    - GET /order/{order_id}: Current state of an order
    - GET /orders: List orders
    - GET /health: System health check

The store, notification service and worker are built once in the lifespan
handler and shared through ``app.state``; routes receive them through
dependencies.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from orderflow.core.clock import Clock, SystemClock
from orderflow.core.config import Settings, get_settings, setup_logging
from orderflow.core.exceptions import (
    OrderflowError,
    OrderValidationError,
    TransientStoreError,
)
from orderflow.models import OrderStatus
from orderflow.schemas import (
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
)
from orderflow.services.checkpoints import BaseCheckpointStore
from orderflow.services.dispatcher import NotificationDispatcher
from orderflow.services.ingress import OrderIngress
from orderflow.services.notifications import (
    BaseNotificationService,
    create_notification_service,
)
from orderflow.services.store import BaseOrderStore, create_order_store
from orderflow.worker import StatusTransitionWorker

logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    settings: Settings = app.state.settings
    clock: Clock = app.state.clock

    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store: BaseOrderStore = app.state.store or create_order_store(settings, clock=clock)
    service: BaseNotificationService = (
        app.state.notification_service or create_notification_service(settings)
    )
    await store.start()
    app.state.store = store
    app.state.notification_service = service
    logger.info(f"✅ Order Store: {store.provider_name}")
    logger.info(f"✅ Notification Service: {service.provider_name}")

    app.state.ingress = OrderIngress(
        store,
        clock=clock,
        default_customer_name=settings.default_customer_name,
    )

    worker: Optional[StatusTransitionWorker] = None
    if app.state.run_worker:
        dispatcher = NotificationDispatcher.from_settings(settings, service, clock=clock)
        worker = StatusTransitionWorker.from_settings(
            settings,
            store,
            dispatcher,
            checkpoints=app.state.checkpoints,
            clock=clock,
        )
        await worker.start()
        logger.info(f"✅ Status worker running (delay {settings.preparation_delay_seconds}s)")
    app.state.worker = worker

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    if worker is not None:
        await worker.stop()
    await service.close()
    await store.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_ingress(request: Request) -> OrderIngress:
    return request.app.state.ingress


def get_store(request: Request) -> BaseOrderStore:
    return request.app.state.store


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BaseOrderStore] = None,
    notification_service: Optional[BaseNotificationService] = None,
    checkpoints: Optional[BaseCheckpointStore] = None,
    clock: Optional[Clock] = None,
    run_worker: Optional[bool] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators left as None are created from settings at startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Accepts food orders and moves each one from PREPARING to "
            "OUT_FOR_DELIVERY after a simulated preparation delay."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.notification_service = notification_service
    app.state.checkpoints = checkpoints
    app.state.clock = clock or SystemClock()
    app.state.run_worker = settings.run_worker_in_api if run_worker is None else run_worker

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    _register_error_handlers(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # ROOT & HEALTH ENDPOINTS
    # =========================================================================

    @app.get("/", tags=["Root"])
    async def root(request: Request) -> dict[str, str]:
        """API root with navigation links."""
        settings: Settings = request.app.state.settings
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "documentation": "/docs",
            "health": "/health",
        }

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(request: Request) -> HealthResponse:
        """Verify all system components are operational."""
        store: BaseOrderStore = request.app.state.store
        service: BaseNotificationService = request.app.state.notification_service
        worker: Optional[StatusTransitionWorker] = request.app.state.worker

        store_status = "healthy" if await store.health_check() else "unhealthy"
        notification_status = "healthy" if await service.health_check() else "unhealthy"

        worker_info: dict[str, Any] = {"enabled": worker is not None}
        if worker is not None:
            worker_info.update(
                running=worker.running,
                in_flight=worker.in_flight,
                checkpoint=worker.committed_position,
                stats=worker.stats.as_dict(),
            )

        worker_ok = worker is None or worker.running
        overall = "operational" if (
            store_status == "healthy" and notification_status == "healthy" and worker_ok
        ) else "degraded"

        return HealthResponse(
            status=overall,
            store=store_status,
            notification_service=notification_status,
            worker=worker_info,
            timestamp=datetime.now(timezone.utc),
        )

    # =========================================================================
    # ORDER API ENDPOINTS
    # =========================================================================

    @app.post(
        "/order",
        status_code=201,
        response_model=OrderCreateResponse,
        responses={
            400: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
        tags=["Orders"],
        summary="Create Order",
    )
    async def create_order(
        order_data: OrderCreate,
        ingress: OrderIngress = Depends(get_ingress),
    ) -> OrderCreateResponse:
        """
        Create a new order.

        The order starts as PREPARING; the worker moves it to
        OUT_FOR_DELIVERY after the preparation delay.
        """
        order = await ingress.create_order(
            item=order_data.item,
            restaurant=order_data.restaurant,
            customer_name=order_data.customer_name,
        )

        return OrderCreateResponse(
            message="Order placed successfully!",
            order=OrderResponse.from_record(order),
        )

    @app.get(
        "/order/{order_id}",
        response_model=OrderResponse,
        responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Orders"],
    )
    async def get_order(
        order_id: str,
        ingress: OrderIngress = Depends(get_ingress),
    ) -> OrderResponse:
        """Get a specific order by ID."""
        order = await ingress.get_order(order_id)
        return OrderResponse.from_record(order)

    @app.get(
        "/orders",
        response_model=OrderListResponse,
        responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Orders"],
        summary="List Orders",
    )
    async def list_orders(
        skip: int = Query(0, ge=0),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[str] = Query(None),
        store: BaseOrderStore = Depends(get_store),
    ) -> OrderListResponse:
        """Retrieve paginated list of orders, newest first."""
        status_enum = None
        if status:
            try:
                status_enum = OrderStatus(status.upper())
            except ValueError:
                raise OrderValidationError(
                    f"Invalid status. Options: {[s.value for s in OrderStatus]}",
                    field="status",
                )

        total = await store.count_orders(status_enum)
        orders = await store.list_orders(status_enum, offset=skip, limit=limit)

        return OrderListResponse(
            total=total,
            orders=[OrderResponse.from_record(o) for o in orders],
        )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(OrderflowError)
    async def orderflow_exception_handler(request: Request, exc: OrderflowError) -> JSONResponse:
        """Pipeline errors carry their own HTTP status."""
        detail = exc.message
        if isinstance(exc, TransientStoreError):
            detail = "Order store unavailable, please retry"
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=type(exc).__name__, detail=detail).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed bodies are client errors (400), like missing fields."""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error="Invalid request",
                detail=[
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                    for err in exc.errors()
                ],
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")
        settings: Settings = request.app.state.settings

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal Server Error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )


# Initialize logging and the default application
setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "orderflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
