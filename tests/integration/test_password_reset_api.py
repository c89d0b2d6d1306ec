"""
Integration tests for the password reset endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from bikemanager.main import create_app

GENERIC = "If this email exists in our system, you will receive a password reset link."


@pytest.fixture
def client(test_settings, services):
    with TestClient(create_app(test_settings, lambda _: services)) as test_client:
        yield test_client


def latest_secret(sender) -> str:
    _, payload = sender.sent[-1]
    return payload["reset_url"].split("token=", 1)[1]


def test_request_responses_are_indistinguishable(client, sender):
    known = client.post("/api/password-reset/request", json={"email": "rider@example.com"})
    unknown = client.post("/api/password-reset/request", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json() == {"success": True, "message": GENERIC}
    assert len(sender.sent) == 1


def test_three_requests_then_rate_limited_with_same_response(client, sender):
    responses = [
        client.post("/api/password-reset/request", json={"email": "rider@example.com"})
        for _ in range(4)
    ]

    assert {r.status_code for r in responses} == {200}
    assert all(r.json()["message"] == GENERIC for r in responses)
    assert len(sender.sent) == 3


def test_validate_and_reset_flow(client, sender, user_directory):
    client.post("/api/password-reset/request", json={"email": "rider@example.com"})
    secret = latest_secret(sender)

    validated = client.get(f"/api/password-reset/validate/{secret}")
    assert validated.status_code == 200
    assert validated.json()["user"] == {"email": "rider@example.com", "name": "Ana"}

    reset = client.post(
        "/api/password-reset/reset", json={"token": secret, "new_password": "brand-new"}
    )
    assert reset.status_code == 200
    assert "user-1" in user_directory.password_hashes

    replay = client.post(
        "/api/password-reset/reset", json={"token": secret, "new_password": "brand-new"}
    )
    assert replay.status_code == 400
    assert replay.json()["detail"] == "Invalid or expired reset token"


def test_expired_token_rejected(client, sender, clock):
    client.post("/api/password-reset/request", json={"email": "rider@example.com"})
    secret = latest_secret(sender)

    clock.advance(hours=1, seconds=1)

    assert client.get(f"/api/password-reset/validate/{secret}").status_code == 400
    response = client.post(
        "/api/password-reset/reset", json={"token": secret, "new_password": "brand-new"}
    )
    assert response.status_code == 400


def test_unknown_token_rejected(client):
    response = client.get("/api/password-reset/validate/" + "0" * 64)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or expired reset token"


def test_short_password_rejected(client, sender):
    client.post("/api/password-reset/request", json={"email": "rider@example.com"})
    secret = latest_secret(sender)

    response = client.post("/api/password-reset/reset", json={"token": secret, "new_password": "abc"})

    assert response.status_code == 400
    assert "at least 6 characters" in response.json()["detail"]
