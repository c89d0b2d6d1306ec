"""
Outbound email senders.

Senders take a recipient address and an opaque payload (subject + text body
built by a payload builder) and return the provider message id. They never
retry: the delivery queue owns retries, so a sender only classifies a failure
as transient or terminal.
"""

import uuid
from typing import Any, Protocol

import httpx

from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class EmailDeliveryError(Exception):
    """Base exception for email delivery failures."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class TransientDeliveryFailure(EmailDeliveryError):
    """Network or provider error; the delivery may succeed if retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code=status_code, recoverable=True)


class TerminalDeliveryFailure(EmailDeliveryError):
    """The provider rejected the message; retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code=status_code, recoverable=False)


class EmailSender(Protocol):
    async def send(self, recipient: str, payload: dict[str, Any]) -> str:
        """Send one email and return the provider message id."""
        ...


class ResendEmailSender:
    """Sends email through the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.sender = f"{from_name} <{from_email}>"
        self.api_url = api_url
        self._client = client or self._create_client(timeout)

    def _create_client(self, timeout: float) -> httpx.AsyncClient:
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _get_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def send(self, recipient: str, payload: dict[str, Any]) -> str:
        body = {
            "from": self.sender,
            "to": [recipient],
            "subject": payload["subject"],
            "text": payload["text"],
        }
        if payload.get("html"):
            body["html"] = payload["html"]

        try:
            response = await self._client.post(self.api_url, json=body, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise TransientDeliveryFailure(f"Email provider timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientDeliveryFailure(f"Email provider unreachable: {e}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientDeliveryFailure(
                f"Email provider returned {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise TerminalDeliveryFailure(
                f"Email provider rejected message: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        message_id = response.json().get("id") or "resend_success"
        logger.info("Email sent via Resend", message_id=message_id, subject=payload["subject"])
        return message_id


class LogOnlyEmailSender:
    """Development sender: logs the email instead of sending it."""

    async def send(self, recipient: str, payload: dict[str, Any]) -> str:
        message_id = f"test_mode_{uuid.uuid4().hex[:12]}"
        logger.info(
            "[TEST MODE] Email would be sent",
            recipient=recipient,
            subject=payload.get("subject"),
            message_id=message_id,
        )
        return message_id

    async def close(self) -> None:
        return None
