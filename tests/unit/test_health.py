"""
Tests for health check endpoints.
"""

from fastapi.testclient import TestClient

from bikemanager.main import create_app


def test_healthz_endpoint(test_settings, services):
    """The basic health check does not depend on any backend."""
    with TestClient(create_app(test_settings, lambda _: services)) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readyz_with_in_memory_backends(test_settings, services):
    with TestClient(create_app(test_settings, lambda _: services)) as client:
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    checks = data["checks"]
    assert checks["database"] == {"ok": True, "backend": "memory"}
    assert checks["redis"] == {"ok": True, "backend": "memory"}
    assert checks["delivery_queue"]["ok"] is True
    assert checks["configuration"]["email_sender"] == "FakeEmailSender"


def test_readyz_reports_redis_down(test_settings, services):
    class DownRedis:
        async def initialize(self):
            return None

        async def ping(self):
            return False

        async def close(self):
            return None

    services.redis_client = DownRedis()

    with TestClient(create_app(test_settings, lambda _: services)) as client:
        data = client.get("/readyz").json()

    assert data["overall_ok"] is False
    assert data["checks"]["redis"]["ok"] is False


def test_readyz_without_lifespan_is_unavailable(test_settings):
    client = TestClient(create_app(test_settings))

    assert client.get("/readyz").status_code == 503


def test_responses_carry_request_id(test_settings, services):
    inbound = "1b4e28ba-2fa1-11d2-883f-0016d3cca427"

    with TestClient(create_app(test_settings, lambda _: services)) as client:
        generated = client.get("/healthz")
        echoed = client.get("/healthz", headers={"X-Request-ID": inbound})

    assert len(generated.headers["X-Request-ID"]) == 36
    assert echoed.headers["X-Request-ID"] == inbound
