"""Password reset outcome models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from src.models.otp import OtpChannel


class ResetFailure(str, Enum):
    """Classified reasons a reset step failed."""

    USER_NOT_FOUND = "user_not_found"
    CONTACT_MISMATCH = "contact_mismatch"
    EMAIL_MISMATCH = "email_mismatch"
    DELIVERY_FAILED = "delivery_failed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    ALREADY_CONSUMED = "already_consumed"
    POLICY_VIOLATION = "policy_violation"


class ResetIdentity(BaseModel):
    """Result of matching a username against a contact channel.

    ``hint`` is the masked destination, never the full value.
    """

    ok: bool
    reason: Optional[ResetFailure] = None
    user_id: Optional[int] = None
    channel: Optional[OtpChannel] = None
    hint: Optional[str] = None


class OtpDispatch(BaseModel):
    """Result of issuing and delivering a reset OTP.

    When ``reason`` is DELIVERY_FAILED the code was still stored and remains
    verifiable; the caller may redeliver or request a fresh one.
    """

    ok: bool
    reason: Optional[ResetFailure] = None
    user_id: Optional[int] = None
    hint: Optional[str] = None


class PasswordUpdateResult(BaseModel):
    """Result of committing a new password."""

    ok: bool
    reason: Optional[ResetFailure] = None
    message: Optional[str] = None
    sessions_invalidated: int = 0
