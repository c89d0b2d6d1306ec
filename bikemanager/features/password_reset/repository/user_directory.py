"""User lookups and password updates needed by the reset flow."""

from typing import Protocol

from bikemanager.db.helpers import execute_query, fetch_one
from bikemanager.db.pool import DatabasePoolManager
from bikemanager.features.password_reset.domain import UserAccount
from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserDirectory(Protocol):
    async def find_by_email(self, email: str) -> UserAccount | None: ...

    async def get(self, user_id: str) -> UserAccount | None: ...

    async def set_password(self, user_id: str, password_hash: str) -> None: ...


class InMemoryUserDirectory:
    def __init__(self):
        self._users: dict[str, UserAccount] = {}
        self.password_hashes: dict[str, str] = {}

    def add(self, user: UserAccount, password_hash: str | None = None) -> None:
        self._users[user.id] = user
        if password_hash is not None:
            self.password_hashes[user.id] = password_hash

    async def find_by_email(self, email: str) -> UserAccount | None:
        wanted = normalize_email(email)
        for user in self._users.values():
            if normalize_email(user.email) == wanted:
                return user
        return None

    async def get(self, user_id: str) -> UserAccount | None:
        return self._users.get(user_id)

    async def set_password(self, user_id: str, password_hash: str) -> None:
        if user_id not in self._users:
            raise KeyError(user_id)
        self.password_hashes[user_id] = password_hash


class PostgresUserDirectory:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def find_by_email(self, email: str) -> UserAccount | None:
        row = await fetch_one(
            self.pool,
            "SELECT id::text AS id, email, COALESCE(name, '') AS name "
            "FROM users WHERE lower(email) = %s",
            (normalize_email(email),),
        )
        return UserAccount(**row) if row else None

    async def get(self, user_id: str) -> UserAccount | None:
        row = await fetch_one(
            self.pool,
            "SELECT id::text AS id, email, COALESCE(name, '') AS name FROM users WHERE id::text = %s",
            (user_id,),
        )
        return UserAccount(**row) if row else None

    async def set_password(self, user_id: str, password_hash: str) -> None:
        updated = await execute_query(
            self.pool,
            "UPDATE users SET password_hash = %s, updated_at = NOW() WHERE id::text = %s",
            (password_hash, user_id),
        )
        if updated != 1:
            raise KeyError(user_id)
        logger.info("Password updated", user_id=user_id)
