from .password_reset_service import (  # noqa: F401
    PasswordResetService,
    build_password_reset_payload,
)
from .token_issuer import TokenIssuer  # noqa: F401
