"""
Reset token persistence.

mark_used() is the single atomic step of redemption: it only succeeds for a
token that is still unused, unrevoked and unexpired at `now`, so two
concurrent redemptions of the same secret cannot both win.
"""

from datetime import datetime
from typing import Protocol

from bikemanager.db.helpers import execute_query, execute_script, fetch_one
from bikemanager.db.pool import DatabasePoolManager
from bikemanager.features.password_reset.domain import ResetToken
from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ResetTokenStore(Protocol):
    async def add(self, token: ResetToken) -> None: ...

    async def find_by_secret_hash(self, secret_hash: str) -> ResetToken | None: ...

    async def revoke_active(self, user_id: str, now: datetime) -> int:
        """Revoke every active token of a user; returns how many were revoked."""
        ...

    async def mark_used(self, token_id: str, now: datetime) -> bool:
        """Atomically redeem an active token. True if this call redeemed it."""
        ...


class InMemoryResetTokenStore:
    def __init__(self):
        self._tokens: dict[str, ResetToken] = {}
        self._by_hash: dict[str, str] = {}

    async def add(self, token: ResetToken) -> None:
        self._tokens[token.token_id] = token.model_copy()
        self._by_hash[token.secret_hash] = token.token_id

    async def find_by_secret_hash(self, secret_hash: str) -> ResetToken | None:
        token_id = self._by_hash.get(secret_hash)
        if token_id is None:
            return None
        return self._tokens[token_id].model_copy()

    async def revoke_active(self, user_id: str, now: datetime) -> int:
        revoked = 0
        for token_id, token in self._tokens.items():
            if token.user_id == user_id and token.is_valid(now):
                self._tokens[token_id] = token.model_copy(update={"revoked_at": now})
                revoked += 1
        return revoked

    async def mark_used(self, token_id: str, now: datetime) -> bool:
        token = self._tokens.get(token_id)
        if token is None or not token.is_valid(now):
            return False
        self._tokens[token_id] = token.model_copy(update={"is_used": True, "used_at": now})
        return True

    def tokens_for(self, user_id: str) -> list[ResetToken]:
        return [token.model_copy() for token in self._tokens.values() if token.user_id == user_id]


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS password_reset_tokens (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        token_hash CHAR(64) NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        is_used BOOLEAN NOT NULL DEFAULT FALSE,
        used_at TIMESTAMPTZ,
        revoked_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_password_reset_tokens_user
        ON password_reset_tokens (user_id, created_at)
    """,
]


class PostgresResetTokenStore:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def ensure_schema(self) -> None:
        await execute_script(self.pool, SCHEMA_STATEMENTS)

    async def add(self, token: ResetToken) -> None:
        query = """
            INSERT INTO password_reset_tokens
                (id, user_id, token_hash, created_at, expires_at, is_used, used_at, revoked_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            self.pool,
            query,
            (
                token.token_id,
                token.user_id,
                token.secret_hash,
                token.created_at,
                token.expires_at,
                token.is_used,
                token.used_at,
                token.revoked_at,
            ),
        )

    async def find_by_secret_hash(self, secret_hash: str) -> ResetToken | None:
        query = """
            SELECT id AS token_id, user_id, token_hash AS secret_hash, created_at,
                   expires_at, is_used, used_at, revoked_at
            FROM password_reset_tokens
            WHERE token_hash = %s
        """
        row = await fetch_one(self.pool, query, (secret_hash,))
        return ResetToken(**row) if row else None

    async def revoke_active(self, user_id: str, now: datetime) -> int:
        query = """
            UPDATE password_reset_tokens
            SET revoked_at = %s
            WHERE user_id = %s
              AND is_used = FALSE
              AND revoked_at IS NULL
              AND expires_at > %s
        """
        revoked = await execute_query(self.pool, query, (now, user_id, now))
        if revoked:
            logger.info("Previous reset tokens revoked", user_id=user_id, revoked=revoked)
        return revoked

    async def mark_used(self, token_id: str, now: datetime) -> bool:
        query = """
            UPDATE password_reset_tokens
            SET is_used = TRUE, used_at = %s
            WHERE id = %s
              AND is_used = FALSE
              AND revoked_at IS NULL
              AND expires_at > %s
        """
        return await execute_query(self.pool, query, (now, token_id, now)) == 1
