"""
Password reset flow: request -> email -> validate -> reset.

The service keeps the issue outcomes distinct (issued, rate limited, unknown
email) so they can be logged and tested; the HTTP layer collapses them into
one generic response so callers cannot probe which emails exist.
"""

from collections.abc import Callable
from typing import Any

from bikemanager.features.password_reset.domain import IssueOutcome, UserAccount
from bikemanager.features.password_reset.errors import PasswordPolicyError, TokenNotFound
from bikemanager.features.password_reset.repository import UserDirectory
from bikemanager.features.password_reset.services.token_issuer import TokenIssuer
from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.security.passwords import hash_password
from bikemanager.services.email_sender import EmailSender

logger = get_logger(__name__)


def build_password_reset_payload(
    user: UserAccount, reset_url: str, expires_in_minutes: int
) -> dict[str, Any]:
    text = (
        f"Hi {user.name or 'there'},\n\n"
        "We received a request to reset your BikeManager password.\n"
        f"Choose a new password here: {reset_url}\n\n"
        f"This link expires in {expires_in_minutes} minutes. "
        "If you did not ask for a reset, you can ignore this email.\n"
    )
    return {
        "subject": "Reset your password - BikeManager",
        "text": text,
        "reset_url": reset_url,
    }


class PasswordResetService:
    def __init__(
        self,
        users: UserDirectory,
        issuer: TokenIssuer,
        email_sender: EmailSender,
        reset_url_builder: Callable[[str], str],
        min_password_length: int = 6,
    ):
        self.users = users
        self.issuer = issuer
        self.email_sender = email_sender
        self.reset_url_builder = reset_url_builder
        self.min_password_length = min_password_length

    async def request_reset(self, email: str) -> IssueOutcome:
        user = await self.users.find_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return IssueOutcome.USER_NOT_FOUND

        result = await self.issuer.issue(user.id)
        if not result.issued:
            return result.outcome

        payload = build_password_reset_payload(
            user,
            self.reset_url_builder(result.secret),
            expires_in_minutes=int(self.issuer.ttl.total_seconds() // 60),
        )
        try:
            message_id = await self.email_sender.send(user.email, payload)
            logger.info("Password reset email sent", user_id=user.id, message_id=message_id)
        except Exception as e:
            # The token stays valid; the user can simply request another one.
            logger.error(
                "Failed to send password reset email",
                user_id=user.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        return result.outcome

    async def validate_token(self, secret: str) -> UserAccount:
        token = await self.issuer.validate(secret)
        user = await self.users.get(token.user_id)
        if user is None:
            raise TokenNotFound()
        return user

    def check_password_policy(self, new_password: str) -> None:
        if len(new_password or "") < self.min_password_length:
            raise PasswordPolicyError(
                f"Password must be at least {self.min_password_length} characters long"
            )

    async def reset_password(self, secret: str, new_password: str) -> UserAccount:
        """
        Redeem the token and store the new password.

        The password policy is checked before redemption so a rejected
        password does not burn the token.
        """
        self.check_password_policy(new_password)

        token = await self.issuer.redeem(secret)
        user = await self.users.get(token.user_id)
        if user is None:
            raise TokenNotFound()

        await self.users.set_password(user.id, hash_password(new_password))
        logger.info("Password reset completed", user_id=user.id)
        return user
