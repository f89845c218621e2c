"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import Database
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    validation_exception_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_VERSION,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .gateways import PaymentGateway, StripeGateway
from .routers import (
    athletes_router,
    booking_router,
    catalog_router,
    health_router,
    metrics_router,
    payment_router,
    waivers_router,
)
from .workers.manager import WorkerManager

# Configure structured logging
setup_structured_logging()

# Configure traditional logging for compatibility
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


def build_payment_gateway() -> PaymentGateway:
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        api_version=settings.stripe_api_version,
        timeout_seconds=settings.payment_gateway_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Opens the datastore handle and payment gateway unless they were
    injected, and runs the background workers while the app is up.
    """
    logger.info("Starting booking engine")
    logger.info(f"Environment: {settings.environment}")

    owns_database = app.state.database is None
    if owns_database:
        app.state.database = Database(
            settings.database_url,
            timeout_seconds=settings.database_timeout_seconds,
            echo=False,
        )
    database: Database = app.state.database
    database.open()

    if app.state.payment_gateway is None:
        app.state.payment_gateway = build_payment_gateway()

    setup_tracing()
    setup_metrics()
    instrument_sqlalchemy(database.engine)
    logger.info("Observability setup completed")

    if not settings.is_production:
        # Production schemas are managed by Alembic migrations
        await database.create_all()
        logger.info("Database schema ensured")

    worker_manager: Optional[WorkerManager] = None
    if app.state.start_workers:
        worker_manager = WorkerManager(database)
        await worker_manager.start_all()
        logger.info("Background workers started")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down booking engine")

    if worker_manager is not None:
        await worker_manager.stop_all()

    if owns_database:
        await database.close()
        logger.info("Database connections closed")

    logger.info("Application shutdown complete")


def create_app(
    database: Optional[Database] = None,
    payment_gateway: Optional[PaymentGateway] = None,
    start_workers: Optional[bool] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        database: Datastore handle to use instead of one built from settings
        payment_gateway: Gateway to use instead of Stripe
        start_workers: Override ``settings.workers_enabled``

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Booking Engine API",
        description="Eligibility, reservation and cancellation of athlete class bookings",
        version=SERVICE_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.state.database = database
    app.state.payment_gateway = payment_gateway
    app.state.start_workers = settings.workers_enabled if start_workers is None else start_workers

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    # Setup custom middleware
    setup_middleware(app, enable_logging=True)

    # Instrument FastAPI with OpenTelemetry
    instrument_fastapi(app)

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register API routers
    app.include_router(health_router)
    app.include_router(catalog_router)
    app.include_router(athletes_router)
    app.include_router(booking_router)
    app.include_router(payment_router)
    app.include_router(waivers_router)
    app.include_router(metrics_router)

    logger.info("FastAPI application created and configured")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "booking_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
