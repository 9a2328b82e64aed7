"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events that build the sync services, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.config import get_settings
from src.app.core.database import check_db, close_db, get_session
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build services on startup, close the DB on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    try:
        await check_db()
    except Exception:
        log.warning("startup.database_unreachable", exc_info=True)

    # ── Contact Sync Services ───────────────────────────────────────────
    try:
        from src.app.contacts.repository import ContactRepository
        from src.app.sync.adapters import default_registry
        from src.app.sync.engine import ReconciliationEngine
        from src.app.sync.links import ContactMappingStore, IntegrationStore, LinkStore
        from src.app.sync.notifier import SyncNotifier
        from src.app.sync.outbound import OutboundWriter
        from src.app.sync.run_log import SyncRunLog
        from src.app.sync.service import SyncService

        contacts = ContactRepository(session_factory=get_session)
        link_store = LinkStore(session_factory=get_session)
        mapping_store = ContactMappingStore(session_factory=get_session)
        run_log = SyncRunLog(session_factory=get_session)

        app.state.contact_repository = contacts
        app.state.link_store = link_store
        app.state.sync_run_log = run_log
        app.state.sync_service = SyncService(
            links=link_store,
            integrations=IntegrationStore(session_factory=get_session),
            run_log=run_log,
            engine=ReconciliationEngine(contacts, link_store, mappings=mapping_store),
            outbound=OutboundWriter(contacts, link_store),
            adapters=default_registry(),
            contacts=contacts,
            notifier=SyncNotifier(session_factory=get_session),
        )
        log.info("startup.sync_services_initialized")
    except Exception:
        log.warning("startup.sync_services_init_failed", exc_info=True)
        app.state.contact_repository = None
        app.state.link_store = None
        app.state.sync_run_log = None
        app.state.sync_service = None

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Contact Sync API",
        version="0.1.0",
        description="Contact reconciliation with Google Sheets, HubSpot, Salesforce and Pipedrive",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
