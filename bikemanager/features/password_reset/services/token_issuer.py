"""
Password reset token issuance and redemption.

Issuance is rate limited per user through a RateWindow keyed
`password_reset:<user_id>`; a refused request is not recorded, so a user
who hits the limit regains access as soon as the oldest request leaves the
window.
"""

import secrets
import uuid
from datetime import datetime, timedelta

from bikemanager.features.password_reset.domain import (
    IssueOutcome,
    IssueResult,
    ResetToken,
    TokenState,
)
from bikemanager.features.password_reset.errors import (
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
)
from bikemanager.features.password_reset.repository import ResetTokenStore
from bikemanager.infrastructure.clock import Clock
from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.security.passwords import hash_secret
from bikemanager.services.rate_window import RateWindow

logger = get_logger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=1)
SECRET_BYTES = 32  # 64 hex chars

_STATE_ERRORS = {
    TokenState.REDEEMED: TokenAlreadyUsed,
    TokenState.REVOKED: TokenRevoked,
    TokenState.EXPIRED: TokenExpired,
}


class TokenIssuer:
    def __init__(
        self,
        token_store: ResetTokenStore,
        rate_window: RateWindow,
        clock: Clock,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        self.token_store = token_store
        self.rate_window = rate_window
        self.clock = clock
        self.ttl = ttl

    @staticmethod
    def rate_key(user_id: str) -> str:
        return f"password_reset:{user_id}"

    async def issue(self, user_id: str) -> IssueResult:
        """
        Mint a new reset token for a user.

        Any token still active for the user is revoked first, so at most one
        token per user can be redeemed at a time.
        """
        now = self.clock.now()

        if not await self.rate_window.try_record_activity(self.rate_key(user_id), now):
            logger.warning("Password reset rate limit exceeded", user_id=user_id)
            return IssueResult(outcome=IssueOutcome.RATE_LIMITED)

        await self.token_store.revoke_active(user_id, now)

        secret = secrets.token_hex(SECRET_BYTES)
        token = ResetToken(
            token_id=uuid.uuid4().hex,
            user_id=user_id,
            secret_hash=hash_secret(secret),
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self.token_store.add(token)

        logger.info(
            "Password reset token issued",
            user_id=user_id,
            token_id=token.token_id,
            expires_at=token.expires_at.isoformat(),
        )
        return IssueResult(outcome=IssueOutcome.ISSUED, token=token, secret=secret)

    def _ensure_active(self, token: ResetToken | None, now: datetime) -> ResetToken:
        if token is None:
            raise TokenNotFound()

        state = token.state(now)
        if state != TokenState.ACTIVE:
            raise _STATE_ERRORS[state]()
        return token

    async def validate(self, secret: str) -> ResetToken:
        """Return the active token for a secret without consuming it."""
        token = await self.token_store.find_by_secret_hash(hash_secret(secret))
        return self._ensure_active(token, self.clock.now())

    async def redeem(self, secret: str) -> ResetToken:
        """
        Consume a token. Exactly one caller can redeem a given secret.

        Raises:
            TokenNotFound, TokenExpired, TokenAlreadyUsed, TokenRevoked
        """
        secret_hash = hash_secret(secret)
        now = self.clock.now()
        token = self._ensure_active(await self.token_store.find_by_secret_hash(secret_hash), now)

        if not await self.token_store.mark_used(token.token_id, now):
            # Lost a race; report whatever state the winner left behind.
            current = await self.token_store.find_by_secret_hash(secret_hash)
            self._ensure_active(current, now)
            raise TokenAlreadyUsed()

        logger.info("Password reset token redeemed", user_id=token.user_id, token_id=token.token_id)
        return token.model_copy(update={"is_used": True, "used_at": now})
