"""
Pytest configuration and shared fixtures.

Settings are read from the environment at import time, so the test
environment is pinned here before any ``triage_relay`` module is imported.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("HUBSPOT_WEBHOOK_TOKEN", "test-webhook-token")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")
os.environ.setdefault("GROQ_API_KEY", "")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from triage_relay.infrastructure.database import Base  # noqa: E402
from triage_relay.triage.application import IIdempotencyStore, IInferenceProvider, INotifier  # noqa: E402
from triage_relay.triage.domain import FailureNotice, ProviderName, Ticket, TriageNotice  # noqa: E402
from triage_relay.triage.infrastructure import models  # noqa: E402,F401


VALID_OUTPUT = {
    "priority": "high",
    "handling_mode": "reply_and_internal_followup",
    "recommended_internal_action": "create_bug_report",
    "internal_ticket_type_hint": "bug",
    "customer_summary": "Customer reports every CSV export from the dashboard fails with an error page.",
    "reply_needed": True,
    "reply_draft": "Thanks for reporting this. We are looking into the export failure now.",
    "questions_for_customer": [],
    "internal_notes": ["Export endpoint returns 500 since this morning"],
    "confidence": 0.82,
}


def make_output(**overrides) -> str:
    """Serialize a valid model output with some fields replaced."""
    data = dict(VALID_OUTPUT)
    data.update(overrides)
    return json.dumps(data)


def make_ticket(ticket_id: str = "T1", **overrides) -> Ticket:
    fields = {
        "ticket_id": ticket_id,
        "subject": "Dashboard export fails with 500",
        "body": "Since this morning every CSV export from the dashboard returns an error page.",
        "received_at": datetime(2024, 12, 14, 10, 0, tzinfo=timezone.utc),
        "customer_email": "jane@example.com",
        "customer_name": "Jane Doe",
        "customer_tier": "pro",
        "product_area": "dashboard",
        "source_url": f"https://app.hubspot.com/contacts/1234567/ticket/{ticket_id}",
        "request_id": f"req-{ticket_id}",
    }
    fields.update(overrides)
    return Ticket(**fields)


# ========== Fakes ==========

class ScriptedProvider(IInferenceProvider):
    """Returns (or raises) scripted responses in order and records every call."""

    def __init__(self, name: ProviderName, responses: Optional[List[Union[str, Exception]]] = None):
        self.name = name
        self.responses = list(responses or [])
        self.calls = []

    async def generate(self, ticket: Ticket, system_prompt: str) -> str:
        self.calls.append((ticket, system_prompt))
        if not self.responses:
            raise AssertionError(f"unexpected call to provider {self.name.value}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class InMemoryIdempotencyStore(IIdempotencyStore):
    def __init__(self, unavailable: bool = False):
        self.records = {}
        self.unavailable = unavailable
        self.mark_calls = []

    async def has_processed(self, ticket_id: str) -> bool:
        if self.unavailable:
            return False
        return ticket_id in self.records

    async def mark_processed(self, ticket_id: str, provider: ProviderName, success: bool) -> None:
        self.mark_calls.append((ticket_id, provider, success))
        if not self.unavailable:
            self.records[ticket_id] = (provider, success)

    async def sweep(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        return 0

    async def get_stats(self) -> dict:
        return {"total": len(self.records), "by_provider": [], "success_rate": 0.0}

    async def check_health(self) -> bool:
        return not self.unavailable


class RecordingNotifier(INotifier):
    def __init__(self, raises: Optional[Exception] = None, delivered: bool = True):
        self.triage_notices = []
        self.failure_notices = []
        self.raises = raises
        self.delivered = delivered

    async def notify_triage(self, notice: TriageNotice) -> bool:
        self.triage_notices.append(notice)
        if self.raises:
            raise self.raises
        return self.delivered

    async def notify_failure(self, notice: FailureNotice) -> bool:
        self.failure_notices.append(notice)
        if self.raises:
            raise self.raises
        return self.delivered


# ========== Fixtures ==========

@pytest.fixture
def ticket() -> Ticket:
    return make_ticket()


@pytest.fixture
def store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
