import json

import httpx
import pytest

from bikemanager.services.email_sender import (
    LogOnlyEmailSender,
    ResendEmailSender,
    TerminalDeliveryFailure,
    TransientDeliveryFailure,
)

PAYLOAD = {"subject": "Maintenance TODAY - BikeManager", "text": "Your bike is due today."}


def make_sender(handler) -> ResendEmailSender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResendEmailSender(
        api_key="re_test",
        from_email="no-reply@bikemanager.app",
        from_name="BikeManager",
        client=client,
    )


@pytest.mark.asyncio
async def test_send_posts_to_resend_and_returns_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    sender = make_sender(handler)
    message_id = await sender.send("rider@example.com", PAYLOAD)
    await sender.close()

    assert message_id == "email_123"
    assert seen["auth"] == "Bearer re_test"
    assert seen["body"]["to"] == ["rider@example.com"]
    assert seen["body"]["from"] == "BikeManager <no-reply@bikemanager.app>"
    assert seen["body"]["subject"] == PAYLOAD["subject"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_retryable_statuses_are_transient(status_code):
    sender = make_sender(lambda request: httpx.Response(status_code, json={}))

    with pytest.raises(TransientDeliveryFailure) as exc_info:
        await sender.send("rider@example.com", PAYLOAD)

    assert exc_info.value.status_code == status_code
    assert exc_info.value.recoverable is True


@pytest.mark.asyncio
async def test_validation_error_is_terminal():
    sender = make_sender(lambda request: httpx.Response(422, json={"message": "invalid `to`"}))

    with pytest.raises(TerminalDeliveryFailure) as exc_info:
        await sender.send("not-an-email", PAYLOAD)

    assert exc_info.value.recoverable is False


@pytest.mark.asyncio
async def test_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    sender = make_sender(handler)

    with pytest.raises(TransientDeliveryFailure):
        await sender.send("rider@example.com", PAYLOAD)


@pytest.mark.asyncio
async def test_log_only_sender_returns_test_mode_id():
    message_id = await LogOnlyEmailSender().send("rider@example.com", PAYLOAD)

    assert message_id.startswith("test_mode_")
