"""
Triage Application Layer
=========================

Application layer for the ticket triage module.

Contains:
- Services: Pipeline orchestration, validation/repair, task scheduling
- Interfaces: Inference provider, idempotency store and notifier contracts
- DTOs: Data transfer objects for API serialization
"""

from triage_relay.triage.application.dto import (
    HubSpotWebhookPayload,
    HubSpotTicketProperties,
    HubSpotContact,
    HubSpotCustomProperties,
    WebhookResponse,
    ErrorResponse,
    StatsResponse,
    ProviderCount,
    HealthResponse,
    DependencyStatus,
)
from triage_relay.triage.application.services import (
    TriageOrchestrator,
    ValidationRepairService,
    TriagePipelineRunner,
    IInferenceProvider,
    IIdempotencyStore,
    INotifier,
)

__all__ = [
    # DTOs
    "HubSpotWebhookPayload",
    "HubSpotTicketProperties",
    "HubSpotContact",
    "HubSpotCustomProperties",
    "WebhookResponse",
    "ErrorResponse",
    "StatsResponse",
    "ProviderCount",
    "HealthResponse",
    "DependencyStatus",
    # Services
    "TriageOrchestrator",
    "ValidationRepairService",
    "TriagePipelineRunner",
    # Collaborator Interfaces
    "IInferenceProvider",
    "IIdempotencyStore",
    "INotifier",
]
