from .models import (  # noqa: F401
    IssueOutcome,
    IssueResult,
    ResetToken,
    TokenState,
    UserAccount,
)
