"""Auth and password-reset request/response models with validation."""

import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from src.models.otp import OtpChannel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoginRequest(BaseModel):
    """Login credentials for authentication.

    Attributes:
        username: User's login name (1-50 chars)
        password: User's password
        branch_id: Branch the user is signing in to
    """

    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)
    branch_id: int = Field(..., ge=1)

    @field_validator("password")
    @classmethod
    def password_not_empty(cls, v: str) -> str:
        """Ensure password is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("Password cannot be empty or whitespace only")
        return v


class UserSummary(BaseModel):
    """Compact user representation for API responses."""

    id: int
    username: str
    email: Optional[str] = None
    contact: Optional[str] = None
    is_active: bool


class LoginResponse(BaseModel):
    """Successful authentication response with token pair.

    Attributes:
        access_token: Short-lived JWT for API access
        refresh_token: Long-lived token for obtaining new access tokens
        token_type: Always "bearer"
        expires_in: Access token lifetime in seconds
        session_id: Login session the tokens are bound to
        user: Summary of the authenticated user
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1, description="Access token lifetime in seconds")
    session_id: UUID
    user: UserSummary


class RefreshRequest(BaseModel):
    """Request to exchange a refresh token for a new token pair."""

    refresh_token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    """Start an SMS password reset for a username and registered contact."""

    username: str = Field(..., min_length=1, max_length=50)
    contact: str

    @field_validator("contact")
    @classmethod
    def contact_ten_digits(cls, v: str) -> str:
        """Contact numbers are exactly ten digits."""
        v = v.strip()
        if not re.fullmatch(r"\d{10}", v):
            raise ValueError("Contact must be exactly 10 digits")
        return v


class EmailOtpRequest(BaseModel):
    """Start an email password reset for a username and registered email."""

    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., max_length=100)

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v


class OtpDispatchResponse(BaseModel):
    """Response after an OTP was issued to a masked destination."""

    user_id: int
    channel: OtpChannel
    hint: str
    message: str


class ResendOtpRequest(BaseModel):
    """Redeliver the live OTP without issuing a new one."""

    user_id: int = Field(..., ge=1)
    channel: OtpChannel


class VerifyOtpRequest(BaseModel):
    """Submit an OTP for verification."""

    user_id: int = Field(..., ge=1)
    channel: OtpChannel
    otp: str = Field(..., pattern=r"^[0-9]{4,6}$")


class ResetPasswordRequest(BaseModel):
    """Set a new password after a successful OTP verification.

    The verified code must be presented again; it ties the reset to whoever
    received the OTP.
    """

    user_id: int = Field(..., ge=1)
    channel: OtpChannel
    otp: str = Field(..., pattern=r"^[0-9]{4,6}$")
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)


class VerifyOtpAndResetPasswordRequest(BaseModel):
    """Verify an SMS OTP and set the new password in one call."""

    username: str = Field(..., min_length=1, max_length=50)
    otp: str = Field(..., pattern=r"^[0-9]{4,6}$")
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    """Authenticated password change."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)
    confirm_new_password: str = Field(..., min_length=1)


class ActiveSessionResponse(BaseModel):
    """An active login session as shown to its owner."""

    session_id: UUID
    login_at: datetime
    last_activity_at: datetime
    ip_address: Optional[str] = None
    browser: str
    operating_system: str
    device: str
    is_current: bool


class LoginHistoryResponse(BaseModel):
    """A past or present login session."""

    session_id: UUID
    login_at: datetime
    logout_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    browser: str
    operating_system: str
    device: str
    status: str
    logout_reason: Optional[str] = None
