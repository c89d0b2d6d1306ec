import pytest

from bikemanager.features.password_reset.domain import IssueOutcome
from bikemanager.features.password_reset.errors import PasswordPolicyError, TokenAlreadyUsed
from bikemanager.security.passwords import verify_password
from bikemanager.services.email_sender import TransientDeliveryFailure


@pytest.fixture
def reset_service(services):
    return services.password_reset_service


def reset_secret(sender) -> str:
    _, payload = sender.sent[-1]
    return payload["reset_url"].split("token=", 1)[1]


@pytest.mark.asyncio
async def test_request_sends_reset_link(reset_service, sender):
    outcome = await reset_service.request_reset("Rider@Example.com ")

    assert outcome == IssueOutcome.ISSUED
    recipient, payload = sender.sent[0]
    assert recipient == "rider@example.com"
    assert payload["reset_url"].startswith("http://localhost:5173/reset-password?token=")
    assert "60 minutes" in payload["text"]


@pytest.mark.asyncio
async def test_unknown_email_sends_nothing(reset_service, sender):
    assert await reset_service.request_reset("nobody@example.com") == IssueOutcome.USER_NOT_FOUND
    assert sender.sent == []


@pytest.mark.asyncio
async def test_three_requests_then_rate_limited(reset_service, sender, clock):
    outcomes = []
    for _ in range(4):
        outcomes.append(await reset_service.request_reset("rider@example.com"))
        clock.advance(minutes=5)

    assert outcomes[:3] == [IssueOutcome.ISSUED] * 3
    assert outcomes[3] == IssueOutcome.RATE_LIMITED
    assert len(sender.sent) == 3


@pytest.mark.asyncio
async def test_email_failure_is_not_surfaced(reset_service, sender):
    sender.fail_next(TransientDeliveryFailure("provider down"))

    assert await reset_service.request_reset("rider@example.com") == IssueOutcome.ISSUED


@pytest.mark.asyncio
async def test_reset_password_updates_hash_and_burns_token(reset_service, sender, user_directory):
    await reset_service.request_reset("rider@example.com")
    secret = reset_secret(sender)

    user = await reset_service.validate_token(secret)
    assert user.email == "rider@example.com"

    await reset_service.reset_password(secret, "n3w-secret")

    assert verify_password("n3w-secret", user_directory.password_hashes["user-1"])
    with pytest.raises(TokenAlreadyUsed):
        await reset_service.reset_password(secret, "another-one")


@pytest.mark.asyncio
async def test_short_password_keeps_token_usable(reset_service, sender):
    await reset_service.request_reset("rider@example.com")
    secret = reset_secret(sender)

    with pytest.raises(PasswordPolicyError):
        await reset_service.reset_password(secret, "12345")

    await reset_service.reset_password(secret, "123456")
