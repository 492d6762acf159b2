from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from triage_relay.config import Settings, get_settings
from triage_relay.shared.api.middleware import CorrelationIDMiddleware
from triage_relay.triage.interfaces import triage_router, webhook_router
from triage_relay.triage.interfaces.controllers import is_valid_webhook_token

TOKEN = "s3cret-token"

PAYLOAD = {
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


@pytest.fixture
def runner():
    return MagicMock()


@pytest.fixture
def idempotency_store():
    store = AsyncMock()
    store.get_stats.return_value = {
        "total": 3,
        "by_provider": [{"provider": "local", "count": 3}],
        "success_rate": 1.0,
    }
    return store


@pytest.fixture
def client(runner, idempotency_store):
    app = FastAPI()
    app.add_middleware(CorrelationIDMiddleware)
    app.include_router(webhook_router)
    app.include_router(triage_router)
    app.state.pipeline_runner = runner
    app.state.idempotency_store = idempotency_store
    app.dependency_overrides[get_settings] = lambda: Settings(
        environment="test",
        hubspot_webhook_token=TOKEN,
        hubspot_portal_base_url="https://app.hubspot.test",
    )
    return TestClient(app)


def _post(client, payload=PAYLOAD, token=TOKEN, **headers):
    if token is not None:
        headers["X-Webhook-Token"] = token
    return client.post("/webhook/hubspot", json=payload, headers=headers)


def test_valid_webhook_is_acknowledged_and_scheduled(client, runner):
    response = _post(client, **{"X-Correlation-ID": "corr-1"})

    assert response.status_code == 200
    assert response.json() == {"status": "accepted", "ticket_id": "987654321", "request_id": "corr-1"}

    runner.schedule.assert_called_once()
    ticket = runner.schedule.call_args.args[0]
    assert ticket.ticket_id == "987654321"
    assert ticket.customer_name == "Jane Doe"
    assert ticket.customer_email == "jane@example.com"
    assert ticket.customer_tier == "pro"
    assert ticket.source_url == "https://app.hubspot.test/contacts/1234567/ticket/987654321"
    assert ticket.request_id == "corr-1"


def test_missing_token_is_rejected(client, runner):
    response = _post(client, token=None)

    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    runner.schedule.assert_not_called()


def test_wrong_token_is_rejected_before_validation(client, runner):
    response = _post(client, payload={"garbage": True}, token="wrong")

    assert response.status_code == 401
    runner.schedule.assert_not_called()


def test_invalid_json_is_rejected(client, runner):
    response = client.post(
        "/webhook/hubspot",
        content=b"{not json",
        headers={"X-Webhook-Token": TOKEN, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    runner.schedule.assert_not_called()


def test_deeply_nested_body_is_rejected(client, runner):
    response = client.post(
        "/webhook/hubspot",
        content=b"[" * 100_000,
        headers={"X-Webhook-Token": TOKEN, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    runner.schedule.assert_not_called()


def test_missing_subject_is_rejected(client, runner):
    payload = {**PAYLOAD, "properties": {"content": "body only"}}
    response = _post(client, payload=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["details"][0]["loc"] == ["properties", "subject"]
    runner.schedule.assert_not_called()


def test_empty_content_is_rejected(client, runner):
    payload = {**PAYLOAD, "properties": {"subject": "Hi", "content": ""}}
    assert _post(client, payload=payload).status_code == 400


def test_duplicate_delivery_is_still_acknowledged(client, runner):
    assert _post(client).status_code == 200
    assert _post(client).status_code == 200
    assert runner.schedule.call_count == 2


def test_request_id_is_generated_when_absent(client):
    response = _post(client)
    assert response.json()["request_id"]


def test_stats(client):
    response = client.get("/triage/stats")

    assert response.status_code == 200
    assert response.json() == {
        "total": 3,
        "by_provider": [{"provider": "local", "count": 3}],
        "success_rate": 1.0,
    }


def test_uninitialized_pipeline_returns_503():
    app = FastAPI()
    app.include_router(webhook_router)
    app.dependency_overrides[get_settings] = lambda: Settings(hubspot_webhook_token=TOKEN)

    response = TestClient(app).post("/webhook/hubspot", json=PAYLOAD, headers={"X-Webhook-Token": TOKEN})
    assert response.status_code == 503


@pytest.mark.parametrize(
    "provided, expected, valid",
    [
        ("abc", "abc", True),
        ("abc", "abd", False),
        (None, "abc", False),
        ("abc", None, False),
        ("", "", False),
    ],
)
def test_is_valid_webhook_token(provided, expected, valid):
    assert is_valid_webhook_token(provided, expected) is valid
