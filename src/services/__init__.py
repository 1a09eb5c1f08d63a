"""Services package exports."""

from src.services.logging_service import configure_logging, get_logger
from src.services.otp_service import OtpService
from src.services.password_reset_service import PasswordResetService
from src.services.session_service import SessionService

__all__ = [
    "OtpService",
    "PasswordResetService",
    "SessionService",
    "configure_logging",
    "get_logger",
]
