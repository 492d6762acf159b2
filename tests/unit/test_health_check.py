from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from triage_relay.main import app


@pytest.fixture
def client():
    # No context manager: the lifespan would connect to real services
    yield TestClient(app)
    for name in ("idempotency_store", "started_at"):
        if hasattr(app.state, name):
            delattr(app.state, name)


def test_health_ok_when_store_answers(client):
    store = AsyncMock()
    store.check_health.return_value = True
    app.state.idempotency_store = store

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["dependencies"]["database"]["status"] == "healthy"
    assert body["dependencies"]["local_llm"]["status"] == "unknown"
    assert body["warnings"] == []


def test_health_degraded_but_200_when_store_down(client):
    store = AsyncMock()
    store.check_health.return_value = False
    app.state.idempotency_store = store

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["dependencies"]["database"]["status"] == "unhealthy"
    assert body["warnings"]


def test_root_lists_endpoints(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "Triage Relay"
    assert response.headers["X-Correlation-ID"]
