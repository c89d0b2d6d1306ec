"""
Password reset feature package: reset tokens, their issuer and the
request/validate/reset API.
"""

from .api.router import router as password_reset_router  # noqa: F401
from .services.password_reset_service import PasswordResetService  # noqa: F401
from .services.token_issuer import TokenIssuer  # noqa: F401
