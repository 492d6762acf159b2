"""
Triage Relay - Main Application
===============================

LLM-assisted support ticket triage relayed to the team chat.

Flow:
- HubSpot webhook -> immediate acknowledgment
- Background pipeline: duplicate check -> local LLM (Groq fallback)
  -> output contract validation (one repair round) -> Slack -> idempotency commit

Wiring only: every component is built here from Settings and handed its
collaborators explicitly.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from triage_relay.config import settings

# Infrastructure
from triage_relay.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)
from triage_relay.infrastructure.llm import ProviderConfig, OllamaLLMClient, GroqLLMClient

# Triage Module
from triage_relay.triage.domain import ProviderName
from triage_relay.triage.application import (
    TriageOrchestrator, ValidationRepairService, TriagePipelineRunner,
    HealthResponse, DependencyStatus
)
from triage_relay.triage.infrastructure import (
    SQLAlchemyIdempotencyStore, InferenceProviderAdapter, SlackNotifier, RetentionScheduler
)
from triage_relay.triage.interfaces import triage_router, webhook_router

# Shared
from triage_relay.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler,
    validation_exception_handler,
)
from triage_relay.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Build the pipeline on startup; drain and release it on shutdown.

    In-flight tickets get up to SHUTDOWN_DRAIN_SECONDS to reach a terminal
    state before clients and the database are closed.
    """
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Triage Relay", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    try:
        await create_tables()
    except Exception as e:
        # the store fails open, so the relay still triages without it
        logger.warning("Idempotency store unavailable at startup", extra={"error": str(e)})

    store = SQLAlchemyIdempotencyStore(get_session_maker())

    logger.info("Initializing inference providers")
    primary = InferenceProviderAdapter(
        ProviderName.LOCAL,
        OllamaLLMClient(ProviderConfig.local_from_settings(settings))
    )
    fallback = InferenceProviderAdapter(
        ProviderName.FALLBACK,
        GroqLLMClient(ProviderConfig.fallback_from_settings(settings))
    )
    if not settings.groq_api_key:
        logger.warning("GROQ_API_KEY not configured - fallback provider will reject every call")

    notifier = SlackNotifier(
        webhook_url=settings.slack_webhook_url,
        channel=settings.slack_channel,
        timeout_seconds=settings.slack_timeout_seconds,
        max_retries=settings.slack_max_retries
    )
    if not settings.slack_webhook_url:
        logger.warning("SLACK_WEBHOOK_URL not configured - notifications will be skipped")

    orchestrator = TriageOrchestrator(
        primary=primary,
        fallback=fallback,
        repair_service=ValidationRepairService(settings.max_repair_attempts),
        idempotency_store=store,
        notifier=notifier
    )
    runner = TriagePipelineRunner(orchestrator)

    retention_scheduler = RetentionScheduler(
        store,
        retention=timedelta(days=settings.idempotency_retention_days),
        interval_hours=settings.retention_sweep_interval_hours
    )
    await retention_scheduler.start()

    # read by the route dependencies
    app.state.settings = settings
    app.state.idempotency_store = store
    app.state.pipeline_runner = runner
    app.state.retention_scheduler = retention_scheduler
    app.state.started_at = time.monotonic()

    logger.info("Triage Relay started successfully")

    yield

    logger.info("Shutting down Triage Relay")

    await runner.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await retention_scheduler.stop()
    await notifier.close()
    await primary.close()
    await fallback.close()
    await close_database()

    logger.info("Triage Relay shutdown complete")


app = FastAPI(
    title="Triage Relay API",
    description="""
    ## LLM-assisted support ticket triage

    Receives HubSpot ticket webhooks, asks a local model (with a Groq
    fallback) for a structured triage recommendation and posts it to Slack.

    Nothing is ever sent to customers or filed automatically: every
    recommendation is advisory and reviewed by the support team.

    **Endpoints:**
    - `POST /webhook/hubspot` - Receive a new ticket (fast acknowledgment)
    - `GET /triage/stats` - Processed ticket statistics
    - `GET /health` - Service health
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins if settings.environment != "production" else [],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# added last runs first: the correlation id exists before request logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(webhook_router)
app.include_router(triage_router)


@app.get("/health", tags=["Health"], response_model=HealthResponse)
async def health_check(request: Request):
    """
    Liveness plus storage status. Always returns 200: a storage outage degrades the service (the
    idempotency store fails open) but does not stop it. Providers are not
    probed.
    """
    store = getattr(request.app.state, "idempotency_store", None)
    started_at = getattr(request.app.state, "started_at", None)

    database = DependencyStatus(status="unknown", message="Store not initialized")
    warnings = []
    if store is not None:
        probe_start = time.perf_counter()
        healthy = await store.check_health()
        latency_ms = int((time.perf_counter() - probe_start) * 1000)
        if healthy:
            database = DependencyStatus(status="healthy", latency_ms=latency_ms)
        else:
            database = DependencyStatus(status="unhealthy", message="Database query failed")
            warnings.append("Database connection failed - operating in degraded mode")

    return HealthResponse(
        status="healthy" if database.status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
        environment=settings.environment,
        uptime_seconds=int(time.monotonic() - started_at) if started_at is not None else 0,
        dependencies={
            "database": database,
            "local_llm": DependencyStatus(status="unknown", message="Not probed during health check"),
            "groq_api": DependencyStatus(status="unknown", message="Not probed during health check"),
        },
        warnings=warnings
    )


@app.get("/", tags=["Root"])
async def root():
    """Service information."""
    return {
        "service": "Triage Relay",
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
        "endpoints": [
            "POST /webhook/hubspot - Receive ticket webhook",
            "GET /triage/stats - Get triage statistics"
        ]
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "triage_relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
