"""
Campus Orders service
Order lifecycle, payments and payment-timeout cancellation for campus food delivery
"""

import asyncio
import os
import subprocess
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campus_orders.api.responses import register_exception_handlers
from campus_orders.api.routes import router as order_router
from campus_orders.api.users import router as user_router
from campus_orders.application.payments import build_gateways
from campus_orders.application.role_applications import RoleApplicationService
from campus_orders.application.scheduler import ExpiryScheduler
from campus_orders.application.service import OrderService
from campus_orders.core_settings import Settings, get_settings
from campus_orders.infrastructure.account_store import AccountStore
from campus_orders.infrastructure.db import Database, get_database
from campus_orders.infrastructure.notifier import Notifier
from campus_orders.infrastructure.order_store import OrderStore
from shared.core import RequestLoggingMiddleware, ServiceHealth, datastore_check, get_logger, setup_logging

SERVICE_DESCRIPTION = "Campus food-delivery order lifecycle service"
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

logger = get_logger(__name__)


def run_migrations() -> None:
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"alembic upgrade failed: {result.stderr.strip()}")


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    database = database or get_database()

    setup_logging(
        service_name=settings.SERVICE_NAME,
        level=settings.LOG_LEVEL,
        version=settings.SERVICE_VERSION,
        environment=settings.ENVIRONMENT,
        log_file=settings.LOG_FILE,
    )

    orders = OrderStore(database)
    accounts = AccountStore(database)
    notifier = Notifier(settings.NOTIFY_WEBHOOK_URL, timeout=settings.NOTIFY_TIMEOUT_SECONDS)
    order_service = OrderService(
        database,
        orders,
        accounts,
        build_gateways(settings, accounts),
        notifier,
        payment_window=timedelta(minutes=settings.PAYMENT_WINDOW_MINUTES),
    )
    scheduler = ExpiryScheduler(orders, notifier, interval_seconds=settings.SWEEP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.SERVICE_NAME} version {settings.SERVICE_VERSION}")

        if settings.RUN_MIGRATIONS:
            logger.info("Running database migrations")
            await asyncio.to_thread(run_migrations)
            logger.info("Database migrations completed")
        else:
            await database.create_all()
            logger.info("Database models initialized")

        if settings.ORDER_SWEEP_ENABLED:
            scheduler.start()

        logger.info(f"{settings.SERVICE_NAME} started successfully")

        yield

        logger.info(f"Shutting down {settings.SERVICE_NAME}")
        await scheduler.stop()
        await notifier.drain()
        await database.dispose()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.settings = settings
    app.state.database = database
    app.state.order_service = order_service
    app.state.role_service = RoleApplicationService(database, accounts)
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    health_service = ServiceHealth(
        settings.SERVICE_NAME,
        settings.SERVICE_VERSION,
        metrics_provider=scheduler.stats,
        required_settings={"DATABASE_URL": settings.DATABASE_URL, "JWT_SECRET": settings.JWT_SECRET},
    )
    health_service.add_check("database:connectivity", datastore_check(database.ping), startup=True)
    if settings.ORDER_SWEEP_ENABLED:
        health_service.add_check("scheduler:order_sweep", scheduler.health_check)
    app.include_router(health_service.create_health_router())
    app.include_router(order_router)
    app.include_router(user_router)

    @app.get("/")
    async def root():
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running",
            "docs": "/api/docs"
        }

    @app.get("/info")
    async def info():
        """Service information endpoint"""
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "description": SERVICE_DESCRIPTION,
            "environment": settings.ENVIRONMENT,
            "payment_window_minutes": settings.PAYMENT_WINDOW_MINUTES,
            "sweep_interval_seconds": settings.SWEEP_INTERVAL_SECONDS,
            "endpoints": {
                "health": "/health",
                "ready": "/health/ready",
                "live": "/health/live",
                "metrics": "/metrics",
                "docs": "/api/docs"
            }
        }

    return app


app = create_app()
