"""Errors raised by the password reset flow."""


class PasswordResetError(Exception):
    """Base exception for password reset operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class InvalidResetToken(PasswordResetError):
    """The presented secret cannot be used. Never retried."""

    reason = "invalid"

    def __init__(self, message: str = "Invalid or expired reset token"):
        super().__init__(message, operation="redeem", recoverable=False)


class TokenNotFound(InvalidResetToken):
    reason = "not_found"


class TokenExpired(InvalidResetToken):
    reason = "expired"


class TokenAlreadyUsed(InvalidResetToken):
    reason = "already_used"


class TokenRevoked(InvalidResetToken):
    reason = "revoked"


class PasswordPolicyError(PasswordResetError):
    """The new password does not meet the password policy."""

    def __init__(self, message: str):
        super().__init__(message, operation="reset_password", recoverable=False)
