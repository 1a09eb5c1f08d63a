"""Models package exports."""

from src.models.otp import OtpChannel, OtpFailure, OtpRecord, OtpVerification
from src.models.password_reset import (
    OtpDispatch,
    PasswordUpdateResult,
    ResetFailure,
    ResetIdentity,
)
from src.models.response_message import ResponseMessage
from src.models.session import (
    ClientMetadata,
    LoginSession,
    RefreshTokenRecord,
    SessionStatus,
    TokenFailure,
    TokenValidation,
)
from src.models.user import User

__all__ = [
    "ClientMetadata",
    "LoginSession",
    "OtpChannel",
    "OtpDispatch",
    "OtpFailure",
    "OtpRecord",
    "OtpVerification",
    "PasswordUpdateResult",
    "RefreshTokenRecord",
    "ResetFailure",
    "ResetIdentity",
    "ResponseMessage",
    "SessionStatus",
    "TokenFailure",
    "TokenValidation",
    "User",
]
