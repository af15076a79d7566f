import uuid

import pytest
from fastapi import status

from app.core.deps import get_digitalrx_client
from app.core.limiter import limiter


PROVIDER_ENDPOINTS = [
    ("post", "/api/prescriptions/{id}/mark-paid", None),
    ("post", "/api/prescriptions/{id}/check-status", None),
    ("post", "/api/prescriptions/status-batch", {}),
]


async def test_refill_run_denied_for_providers(client, provider_token):
    """Verify that a PROVIDER cannot trigger the admin refill job."""
    response = await client.post("/api/admin/refills/run", headers=provider_token)

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["detail"] == "Admin access required"


@pytest.mark.parametrize("method, endpoint, payload", PROVIDER_ENDPOINTS)
async def test_provider_endpoints_denied_for_admins(client, admin_token, method, endpoint, payload):
    url = endpoint.format(id=uuid.uuid4())

    kwargs = {"headers": admin_token}
    if payload is not None:
        kwargs["json"] = payload

    response = await getattr(client, method)(url, **kwargs)

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["detail"] == "Provider access required"


@pytest.mark.parametrize("method, endpoint, payload", PROVIDER_ENDPOINTS)
async def test_provider_endpoints_require_a_token(client, method, endpoint, payload):
    url = endpoint.format(id=uuid.uuid4())

    kwargs = {"json": payload} if payload is not None else {}
    response = await getattr(client, method)(url, **kwargs)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_garbage_token_is_rejected(client):
    response = await client.post(
        "/api/prescriptions/status-batch",
        json={},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Token is invalid or has expired"


async def test_disabled_account_is_refused(client, db_session, test_provider, provider_token):
    test_provider.is_active = False
    await db_session.commit()

    response = await client.post("/api/prescriptions/status-batch", json={}, headers=provider_token)

    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.parametrize("header", ["x-internal-api-key", "x-internal-secret"])
async def test_internal_key_headers_are_accepted(client, test_pharmacy, header):
    response = await client.post(
        f"/api/prescriptions/{uuid.uuid4()}/submit-to-pharmacy",
        headers={header: "internal-test-key"},
    )

    # Authenticated; the prescription simply does not exist
    assert response.status_code == status.HTTP_404_NOT_FOUND


async def test_wrong_internal_key_falls_back_to_jwt(client):
    response = await client.post(
        f"/api/prescriptions/{uuid.uuid4()}/submit-to-pharmacy",
        headers={"x-internal-api-key": "guess"},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


async def test_health_reports_dependencies(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "dependencies": {"database": "ok", "redis": "ok", "digitalrx": "ok"},
    }


async def test_health_degraded_when_digitalrx_unreachable(client, test_app):
    class Unreachable:
        async def ping(self, base_url=None):
            return False

    test_app.dependency_overrides[get_digitalrx_client] = lambda: Unreachable()

    response = await client.get("/health")

    assert response.json()["status"] == "degraded"
    assert response.json()["dependencies"]["digitalrx"] == "unreachable"


async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-Id": "abc-123"})

    assert response.headers["X-Request-Id"] == "abc-123"


@pytest.fixture
def rate_limited():
    limiter.reset()
    limiter.enabled = True
    yield
    limiter.enabled = False
    limiter.reset()


WEBHOOKS = [
    ("/api/webhooks/authnet", {}),
    ("/api/webhooks/digitalrx", {"x-webhook-secret": "digitalrx-test-secret"}),
]


@pytest.mark.parametrize("endpoint, headers", WEBHOOKS)
async def test_webhooks_are_rate_limited(client, rate_limited, endpoint, headers):
    """Verify that a flood of webhook calls from one address is cut off at 60 a minute."""
    for _ in range(60):
        response = await client.post(endpoint, json={"QueueID": "unknown"}, headers=headers)
        assert response.status_code != status.HTTP_429_TOO_MANY_REQUESTS

    response = await client.post(endpoint, json={"QueueID": "unknown"}, headers=headers)

    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert response.json()["error"] == "Too many requests. Please slow down."
