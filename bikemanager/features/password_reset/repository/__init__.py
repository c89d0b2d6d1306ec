from .token_store import (  # noqa: F401
    InMemoryResetTokenStore,
    PostgresResetTokenStore,
    ResetTokenStore,
)
from .user_directory import (  # noqa: F401
    InMemoryUserDirectory,
    PostgresUserDirectory,
    UserDirectory,
    normalize_email,
)
