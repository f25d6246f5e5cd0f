"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events wiring the contact stores and HubSpot sync services, and
the v1 API router.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from src.crm_bridge.api.middleware import LoggingMiddleware, configure_structlog
from src.crm_bridge.api.v1.router import router as v1_router
from src.crm_bridge.auth.oauth import (
    HubSpotOAuthClient,
    OAuthServiceTokenProvider,
    StoredTokenProvider,
)
from src.crm_bridge.auth.repository import CredentialRepository
from src.crm_bridge.config import get_settings
from src.crm_bridge.contacts.repository import ContactRepository, SyncJobRepository
from src.crm_bridge.contacts.sync import (
    HubSpotGateway,
    InboundReconciler,
    OutboundReconciler,
    RequestLimiter,
)
from src.crm_bridge.core.database import close_db, get_session, init_db
from src.crm_bridge.core.errors import (
    AuthorizationRequiredError,
    BridgeError,
    TokenExchangeError,
)
from src.crm_bridge.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and sync services on startup, close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT.value,
            customer_id=settings.CUSTOMER_ID,
        )

    contact_repository = ContactRepository(session_factory=get_session)
    sync_job_repository = SyncJobRepository(session_factory=get_session)

    oauth_client = HubSpotOAuthClient.from_settings(settings)
    stored_provider = StoredTokenProvider(
        oauth=oauth_client,
        credentials=CredentialRepository(session_factory=get_session),
    )
    if settings.OAUTH_SERVICE_URL:
        token_provider = OAuthServiceTokenProvider(settings.OAUTH_SERVICE_URL)
        app.state.stored_token_provider = None
        logger.info("oauth.external_token_service", url=settings.OAUTH_SERVICE_URL)
    else:
        token_provider = stored_provider
        app.state.stored_token_provider = stored_provider

    gateway = HubSpotGateway(
        token_provider=token_provider,
        customer_id=settings.CUSTOMER_ID,
        limiter=RequestLimiter(
            max_concurrent=settings.HUBSPOT_MAX_CONCURRENT,
            min_interval=settings.HUBSPOT_MIN_REQUEST_INTERVAL,
        ),
    )

    app.state.oauth_client = oauth_client
    app.state.contact_repository = contact_repository
    app.state.outbound_reconciler = OutboundReconciler(
        contacts=contact_repository,
        sync_jobs=sync_job_repository,
        gateway=gateway,
        batch_size=settings.SYNC_BATCH_SIZE,
    )
    app.state.inbound_reconciler = InboundReconciler(contacts=contact_repository, gateway=gateway)
    app.state.outbound_lock = asyncio.Lock()
    logger.info("app.started", environment=settings.ENVIRONMENT.value, port=settings.PORT)

    yield

    await close_db()
    logger.info("app.stopped")


async def _authorization_required(request: Request, exc: AuthorizationRequiredError) -> Response:
    logger.warning("oauth.authorization_required", customer_id=exc.customer_id, path=request.url.path)
    return RedirectResponse("/api/install", status_code=status.HTTP_307_TEMPORARY_REDIRECT)


async def _token_exchange_failed(request: Request, exc: TokenExchangeError) -> Response:
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


async def _bridge_error(request: Request, exc: BridgeError) -> Response:
    logger.error("request.bridge_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)}
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CRM Bridge API",
        version="0.1.0",
        description="Bidirectional contact sync between a local contact store and HubSpot",
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
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(AuthorizationRequiredError, _authorization_required)
    app.add_exception_handler(TokenExchangeError, _token_exchange_failed)
    app.add_exception_handler(BridgeError, _bridge_error)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
