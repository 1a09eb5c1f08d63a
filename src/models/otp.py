"""One-time password models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OtpChannel(str, Enum):
    """Delivery channel an OTP proves possession of."""

    SMS = "sms"
    EMAIL = "email"


class OtpFailure(str, Enum):
    """Why an OTP verification did not succeed."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    ALREADY_CONSUMED = "already_consumed"


class OtpRecord(BaseModel):
    """A stored OTP code.

    Only the most recent record per (user_id, channel) is live; older ones are
    kept for audit with ``superseded_at`` stamped.
    """

    id: int
    user_id: int
    channel: OtpChannel
    code: str
    created_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None
    reset_used_at: Optional[datetime] = None

    @property
    def consumed(self) -> bool:
        return self.consumed_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class OtpVerification(BaseModel):
    """Outcome of checking a submitted OTP."""

    ok: bool
    reason: Optional[OtpFailure] = None
    otp_id: Optional[int] = None

    @classmethod
    def success(cls, otp_id: int) -> "OtpVerification":
        return cls(ok=True, otp_id=otp_id)

    @classmethod
    def failure(cls, reason: OtpFailure) -> "OtpVerification":
        return cls(ok=False, reason=reason)
