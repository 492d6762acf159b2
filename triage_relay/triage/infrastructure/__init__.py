"""
Triage Infrastructure Layer
============================

Infrastructure implementations for the ticket triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Idempotency store implementation
- External: Provider adapter, Slack notifier, retention scheduler
"""

from triage_relay.triage.infrastructure.models import ProcessedTicketModel
from triage_relay.triage.infrastructure.repositories import SQLAlchemyIdempotencyStore
from triage_relay.triage.infrastructure.external import (
    InferenceProviderAdapter,
    CircuitBreaker,
    SlackNotifier,
    RetentionScheduler,
)

__all__ = [
    "ProcessedTicketModel",
    "SQLAlchemyIdempotencyStore",
    "InferenceProviderAdapter",
    "CircuitBreaker",
    "SlackNotifier",
    "RetentionScheduler",
]
