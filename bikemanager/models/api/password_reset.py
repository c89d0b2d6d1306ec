"""Request and response models for the password reset endpoints."""

from pydantic import BaseModel, Field


class PasswordResetRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320, description="Account email address")


class PasswordResetConfirmRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Secret from the reset email")
    new_password: str = Field(..., description="New account password")


class PasswordResetMessageResponse(BaseModel):
    success: bool = True
    message: str


class ResetTokenUser(BaseModel):
    email: str
    name: str = ""


class ValidateResetTokenResponse(BaseModel):
    success: bool = True
    message: str
    user: ResetTokenUser
