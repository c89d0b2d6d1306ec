"""
Password reset routes.

Every outcome of a reset request (issued, rate limited, unknown email) gets
the same response, and every unusable token gets the same 400, so the API
does not reveal which accounts exist or why a token failed.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from bikemanager.dependencies import get_services
from bikemanager.features.password_reset.errors import InvalidResetToken, PasswordPolicyError
from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.models.api.password_reset import (
    PasswordResetConfirmRequest,
    PasswordResetMessageResponse,
    PasswordResetRequest,
    ResetTokenUser,
    ValidateResetTokenResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/password-reset", tags=["password-reset"])

GENERIC_REQUEST_MESSAGE = "If this email exists in our system, you will receive a password reset link."
INVALID_TOKEN_MESSAGE = "Invalid or expired reset token"


@router.post("/request", response_model=PasswordResetMessageResponse)
async def request_password_reset(body: PasswordResetRequest, services=Depends(get_services)):
    try:
        outcome = await services.password_reset_service.request_reset(body.email)
    except Exception as e:
        logger.error(
            "Unexpected error during password reset request",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process password reset request",
        ) from None

    logger.info("Password reset request handled", outcome=str(outcome))
    return PasswordResetMessageResponse(message=GENERIC_REQUEST_MESSAGE)


@router.get("/validate/{token}", response_model=ValidateResetTokenResponse)
async def validate_reset_token(token: str, services=Depends(get_services)):
    try:
        user = await services.password_reset_service.validate_token(token)
    except InvalidResetToken as e:
        logger.info("Reset token rejected", reason=e.reason)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN_MESSAGE
        ) from None

    return ValidateResetTokenResponse(
        message="Token is valid",
        user=ResetTokenUser(email=user.email, name=user.name),
    )


@router.post("/reset", response_model=PasswordResetMessageResponse)
async def reset_password(body: PasswordResetConfirmRequest, services=Depends(get_services)):
    try:
        await services.password_reset_service.reset_password(body.token, body.new_password)

    except PasswordPolicyError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

    except InvalidResetToken as e:
        logger.info("Password reset rejected", reason=e.reason)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN_MESSAGE
        ) from None

    return PasswordResetMessageResponse(message="Password has been reset successfully")
