"""
Domain models for password reset.

A ResetToken moves Active -> Redeemed | Expired | Revoked. Only the SHA-256
digest of the secret is stored; the plaintext leaves the process once, in
the reset email.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, field_validator

from bikemanager.infrastructure.clock import ensure_utc


class TokenState(StrEnum):
    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class IssueOutcome(StrEnum):
    ISSUED = "issued"
    RATE_LIMITED = "rate_limited"
    USER_NOT_FOUND = "user_not_found"


class ResetToken(BaseModel):
    token_id: str
    user_id: str
    secret_hash: str
    created_at: datetime
    expires_at: datetime
    is_used: bool = False
    used_at: datetime | None = None
    revoked_at: datetime | None = None

    @field_validator("created_at", "expires_at", "used_at", "revoked_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def state(self, now: datetime) -> TokenState:
        if self.is_used:
            return TokenState.REDEEMED
        if self.revoked_at is not None:
            return TokenState.REVOKED
        if self.is_expired(now):
            return TokenState.EXPIRED
        return TokenState.ACTIVE

    def is_valid(self, now: datetime) -> bool:
        return self.state(now) == TokenState.ACTIVE


class UserAccount(BaseModel):
    id: str
    email: str
    name: str = ""


@dataclass(slots=True)
class IssueResult:
    outcome: IssueOutcome
    token: ResetToken | None = None
    secret: str | None = None

    @property
    def issued(self) -> bool:
        return self.outcome == IssueOutcome.ISSUED
