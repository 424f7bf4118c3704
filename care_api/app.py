"""
Application factory.

``create_app()`` wires settings, the exception handlers, request-context
middleware and every router.  The lifespan owns the engine, the token
registry, the audit queue and (optionally) the pilot feedback worker.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from care_api.auth import TokenRegistry
from care_api.errors import setup_exception_handlers
from care_api.middleware import RequestContextMiddleware
from care_api.routers import (
    billing,
    budgets,
    family_portal,
    health,
    ledger,
    medication,
    migrations,
    payroll,
    pilots,
    residents,
    tenants,
)
from care_api.settings import ApiSettings
from care_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from care_kernel.logging_config import configure_logging, get_logger
from care_kernel.services.audit_service import AuditQueue
from care_modules.pilot_feedback import PilotFeedbackWorker

API_V1 = "/api/v1"

logger = get_logger("api.app")


def create_app(
    settings: Optional[ApiSettings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    token_registry: Optional[TokenRegistry] = None,
) -> FastAPI:
    """Build the API.

    ``session_factory`` and ``token_registry`` replace the ones built from
    settings; tests pass both to run against their own engine.
    """
    settings = settings or ApiSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(level=getattr(logging, settings.log_level))
        factory = session_factory
        if factory is None:
            init_engine_from_url(settings.database_url)
            if settings.create_tables:
                create_tables()
            factory = get_session_factory()
        app.state.session_factory = factory

        if token_registry is not None:
            app.state.token_registry = token_registry
        elif settings.api_tokens_file is not None:
            app.state.token_registry = TokenRegistry.from_yaml(settings.api_tokens_file)
        else:
            logger.warning("token_registry_empty")
            app.state.token_registry = TokenRegistry()

        audit_queue = None
        if settings.audit_queue_enabled:
            audit_queue = AuditQueue(factory, flush_interval=settings.audit_flush_interval_seconds)
            audit_queue.start()
        app.state.audit_queue = audit_queue

        worker = None
        if settings.pilot_worker_enabled:
            worker = PilotFeedbackWorker(
                factory, poll_interval_seconds=settings.pilot_poll_interval_seconds,
            )
            worker.start()
        logger.info("api_started", extra={"audit_queue": audit_queue is not None, "pilot_worker": worker is not None})

        yield

        if worker is not None:
            worker.stop()
        if audit_queue is not None:
            audit_queue.stop()
        logger.info("api_stopped")

    app = FastAPI(
        title="CareNotes back office",
        version="0.1.0",
        openapi_url=f"{API_V1}/openapi.json",
        docs_url=f"{API_V1}/docs",
        lifespan=lifespan,
    )
    app.add_middleware(RequestContextMiddleware)
    setup_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(tenants.router, prefix=f"{API_V1}/tenants", tags=["tenants"])
    app.include_router(residents.router, prefix=f"{API_V1}/residents", tags=["residents"])
    app.include_router(billing.router, prefix=f"{API_V1}/billing", tags=["billing"])
    app.include_router(budgets.router, prefix=f"{API_V1}/budgets", tags=["budgets"])
    app.include_router(ledger.router, prefix=f"{API_V1}/ledger", tags=["ledger"])
    app.include_router(payroll.router, prefix=f"{API_V1}/payroll", tags=["payroll"])
    app.include_router(medication.router, prefix=f"{API_V1}/medication", tags=["medication"])
    app.include_router(pilots.router, prefix=f"{API_V1}/pilots", tags=["pilots"])
    app.include_router(family_portal.router, prefix=f"{API_V1}/family-portal", tags=["family-portal"])
    app.include_router(migrations.router, prefix=f"{API_V1}/migrations", tags=["migrations"])
    return app
