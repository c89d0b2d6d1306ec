"""
Password and secret hashing helpers.

Passwords are stored as bcrypt hashes (`$2b$` format, cost 10) in
users.password_hash, the column login verifies with bcrypt. One-time secrets
(password reset tokens) are stored as plain SHA-256 digests: they are long
random values, so a slow KDF buys nothing and lookups stay indexable.
"""

import hashlib

import bcrypt

BCRYPT_ROUNDS = 10

__all__ = [
    "PasswordHashError",
    "hash_password",
    "verify_password",
    "hash_secret",
]


class PasswordHashError(ValueError):
    """Raised when a stored password hash cannot be parsed."""


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError as e:
        raise PasswordHashError("Malformed password hash") from e


def hash_secret(secret: str) -> str:
    """Hex SHA-256 digest of a one-time secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
