"""leadsync API - Main FastAPI Application."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from leadsync.api.routes import health, sync, webhooks
from leadsync.core.config import Settings, get_settings
from leadsync.core.exceptions import LeadSyncException, sanitize_error
from leadsync.core.resilience import ResilientExecutor
from leadsync.db.supabase import create_supabase_client
from leadsync.integrations.instantly import InstantlyClient
from leadsync.integrations.pipedrive import PipedriveClient
from leadsync.services.lead_directory import SupabaseLeadDirectory
from leadsync.services.lead_sync import SyncOrchestrator
from leadsync.services.outcome_store import InMemoryOutcomeStore, OutcomeStore, SupabaseOutcomeStore
from leadsync.services.side_effects import CampaignSideEffects


# JSON for production (log collectors read stdout), text for dev
def _configure_logging() -> None:
    """Set up logging based on LOG_FORMAT / LOG_LEVEL.

    json: Structured JSON via python-json-logger.
    text: Human-readable format.
    """
    settings = get_settings()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if settings.LOG_FORMAT == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": "leadsync"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
) -> tuple[SyncOrchestrator, SupabaseLeadDirectory | None, list[Any]]:
    """Wire the sync engine from settings.

    Returns:
        The orchestrator, the contact directory (None without Supabase) and
        the HTTP clients to close on shutdown.
    """
    executor = ResilientExecutor(config=settings.resilience_config())
    pipedrive = PipedriveClient(
        api_key=settings.PIPEDRIVE_API_KEY.get_secret_value(),
        status_field_id=settings.PIPEDRIVE_STATUS_FIELD_ID,
        base_url=settings.PIPEDRIVE_API_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    instantly = InstantlyClient(
        api_key=settings.INSTANTLY_API_KEY.get_secret_value(),
        base_url=settings.INSTANTLY_API_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )

    store: OutcomeStore
    directory: SupabaseLeadDirectory | None = None
    if settings.supabase_configured:
        client = create_supabase_client(settings)
        store = SupabaseOutcomeStore(client)
        directory = SupabaseLeadDirectory(client)
    else:
        logger.warning("Supabase not configured - sync outcomes are kept in memory only")
        store = InMemoryOutcomeStore()

    side_effects = CampaignSideEffects(
        executor,
        suppression=instantly,
        activity_log=pipedrive,
        directory=directory,
    )
    orchestrator = SyncOrchestrator(
        crm=pipedrive,
        executor=executor,
        store=store,
        side_effects=side_effects,
        directory=directory,
    )
    return orchestrator, directory, [pipedrive, instantly]


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan handler for startup and shutdown events."""
    settings = get_settings()
    settings.validate_startup()

    logger.info("Starting leadsync API...")
    orchestrator, directory, clients = build_orchestrator(settings)
    app.state.orchestrator = orchestrator
    app.state.lead_directory = directory
    yield
    logger.info("Shutting down leadsync API...")
    orchestrator.executor.shutdown()
    for client in clients:
        await client.aclose()


app = FastAPI(
    title="leadsync API",
    description="Lead status synchronization between Pipedrive and Instantly",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(sync.router)


@app.exception_handler(LeadSyncException)
async def leadsync_exception_handler(request: Request, exc: LeadSyncException) -> JSONResponse:
    """Handle sync-engine exceptions with a consistent JSON body.

    Server-side errors get a sanitized message.
    """
    request_id = str(uuid.uuid4())
    logger.warning(
        "leadsync exception occurred",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    detail = exc.message if exc.status_code < 500 else sanitize_error(exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": detail,
            "code": exc.code,
            "request_id": request_id,
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI request validation errors."""
    request_id = str(uuid.uuid4())
    logger.warning(
        "Request validation error",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "error_count": len(exc.errors()),
        },
    )
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Request validation error",
            "code": "REQUEST_VALIDATION_ERROR",
            "request_id": request_id,
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions globally."""
    request_id = str(uuid.uuid4())
    logger.exception(
        "Unhandled exception occurred",
        exc_info=exc,
        extra={
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An internal server error occurred",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
        },
    )


@app.get("/", tags=["system"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {"name": "leadsync API", "version": "1.0.0", "docs": "/docs"}
