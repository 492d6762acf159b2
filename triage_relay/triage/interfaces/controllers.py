"""
Triage Controllers (API Routes)
================================

FastAPI routes for the inbound ticket webhook and triage statistics.

Controllers delegate to application services. The webhook acknowledges as
soon as the payload is authenticated and valid; triage runs afterwards in
the background.
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from triage_relay.config import Settings, get_settings
from triage_relay.shared.api.middleware import get_correlation_id
from triage_relay.shared.infrastructure.logging import get_logger
from triage_relay.triage.application import (
    HubSpotWebhookPayload,
    WebhookResponse,
    ErrorResponse,
    StatsResponse,
    TriagePipelineRunner,
    IIdempotencyStore,
)

logger = get_logger(__name__)
webhook_router = APIRouter(prefix="/webhook", tags=["Webhooks"])
router = APIRouter(prefix="/triage", tags=["Ticket Triage"])


# ========== Example payloads for Swagger ==========

WEBHOOK_REQUEST_EXAMPLE = {
    "objectId": 987654321,
    "subscriptionType": "ticket.creation",
    "portalId": 1234567,
    "occurredAt": 1734172800000,
    "properties": {
        "hs_ticket_id": "987654321",
        "subject": "Dashboard export fails with 500",
        "content": "Since this morning every CSV export from the dashboard returns an error page."
    },
    "associatedContacts": [
        {"id": 42, "email": "jane@example.com", "firstname": "Jane", "lastname": "Doe"}
    ],
    "customProperties": {"customer_tier": "pro", "product_area": "dashboard"}
}

WEBHOOK_RESPONSE_EXAMPLE = {
    "status": "accepted",
    "ticket_id": "987654321",
    "request_id": "0d9c3b1e-5a4f-4b8e-9a53-2f0c1d7e6b21"
}

STATS_RESPONSE_EXAMPLE = {
    "total": 150,
    "by_provider": [
        {"provider": "fallback", "count": 12},
        {"provider": "local", "count": 138}
    ],
    "success_rate": 0.98
}


# ========== Dependencies ==========

def get_pipeline_runner(request: Request) -> TriagePipelineRunner:
    """Get the pipeline runner from app state."""
    runner = getattr(request.app.state, "pipeline_runner", None)
    if runner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Triage pipeline not initialized"
        )
    return runner


def get_idempotency_store(request: Request) -> IIdempotencyStore:
    """Get the idempotency store from app state."""
    store = getattr(request.app.state, "idempotency_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Idempotency store not initialized"
        )
    return store


def is_valid_webhook_token(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of the X-Webhook-Token header."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _error(status_code: int, error: str, message: str, request_id: str, **extra) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, request_id=request_id).model_dump()
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ========== Route Handlers ==========

@webhook_router.post(
    "/hubspot",
    response_model=WebhookResponse,
    summary="Receive a new HubSpot ticket",
    description="""
    Accepts a HubSpot ticket webhook and schedules triage in the background.

    Requires the `X-Webhook-Token` header. Returns 200 as soon as the payload
    is valid; the triage recommendation is posted to the team chat later.
    Duplicate deliveries are acknowledged the same way and skipped by the pipeline.
    """,
    responses={
        200: {
            "description": "Ticket accepted",
            "content": {"application/json": {"example": WEBHOOK_RESPONSE_EXAMPLE}}
        },
        400: {"description": "Invalid payload", "model": ErrorResponse},
        401: {"description": "Missing or invalid X-Webhook-Token", "model": ErrorResponse},
        503: {"description": "Pipeline not initialized"}
    },
    openapi_extra={
        "requestBody": {
            "content": {"application/json": {"example": WEBHOOK_REQUEST_EXAMPLE}}
        }
    }
)
async def receive_hubspot_ticket(
    request: Request,
    runner: TriagePipelineRunner = Depends(get_pipeline_runner),
    settings: Settings = Depends(get_settings)
):
    correlation_id = get_correlation_id(request)

    if not is_valid_webhook_token(request.headers.get("X-Webhook-Token"), settings.hubspot_webhook_token):
        logger.warning(
            "Webhook authentication failed",
            extra={"correlation_id": correlation_id}
        )
        return _error(
            status.HTTP_401_UNAUTHORIZED,
            "unauthorized",
            "Missing or invalid X-Webhook-Token header",
            correlation_id
        )

    try:
        body = await request.json()
    except (ValueError, RecursionError):
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "validation_error",
            "Request body is not valid JSON",
            correlation_id
        )

    try:
        payload = HubSpotWebhookPayload.model_validate(body)
    except ValidationError as e:
        logger.warning(
            "Webhook payload rejected",
            extra={"correlation_id": correlation_id, "error_count": e.error_count()}
        )
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "validation_error",
            "Invalid request body",
            correlation_id,
            details=e.errors(include_url=False, include_context=False)
        )

    ticket = payload.to_domain(
        request_id=correlation_id,
        portal_base_url=settings.hubspot_portal_base_url
    )

    logger.info(
        "Webhook accepted",
        extra={
            "correlation_id": correlation_id,
            "ticket_id": ticket.ticket_id,
            "subscription_type": payload.subscriptionType,
            "has_contacts": bool(payload.associatedContacts)
        }
    )

    runner.schedule(ticket)

    return WebhookResponse(ticket_id=ticket.ticket_id, request_id=correlation_id)


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Get triage statistics",
    description="""
    Get statistics from the idempotency store:
    - Number of tickets that reached a terminal state
    - Distribution by provider (local / fallback)
    - Share of successful triages
    """,
    responses={
        200: {
            "description": "Statistics",
            "content": {"application/json": {"example": STATS_RESPONSE_EXAMPLE}}
        }
    }
)
async def get_stats(store: IIdempotencyStore = Depends(get_idempotency_store)):
    return StatsResponse(**await store.get_stats())


# Export routers for inclusion in main app
triage_router = router
