"""Password reset and password change API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.dependencies import (
    AuthContext,
    get_auth_context,
    get_password_reset_service,
)
from src.models.auth import (
    ChangePasswordRequest,
    EmailOtpRequest,
    ForgotPasswordRequest,
    OtpDispatchResponse,
    ResendOtpRequest,
    ResetPasswordRequest,
    VerifyOtpAndResetPasswordRequest,
    VerifyOtpRequest,
)
from src.models.otp import OtpChannel
from src.models.password_reset import OtpDispatch, PasswordUpdateResult, ResetFailure
from src.services.password_reset_service import PasswordResetService


router = APIRouter(prefix="/password", tags=["Password"])

# Identity failures all map to the same response
IDENTITY_FAILURES = {
    ResetFailure.USER_NOT_FOUND,
    ResetFailure.CONTACT_MISMATCH,
    ResetFailure.EMAIL_MISMATCH,
}

FAILURE_MESSAGES = {
    ResetFailure.NOT_FOUND: "No OTP found, please request a new one",
    ResetFailure.EXPIRED: "OTP has expired, please request a new one",
    ResetFailure.MISMATCH: "Invalid OTP",
    ResetFailure.ALREADY_CONSUMED: "OTP has already been used",
}


def _failure(reason: ResetFailure, message: Optional[str] = None) -> HTTPException:
    """Build the HTTP error for a classified reset failure."""
    if reason in IDENTITY_FAILURES:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "reason": "invalid_user_details",
                "message": "The details provided do not match our records",
            },
        )
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "reason": reason.value,
            "message": message or FAILURE_MESSAGES.get(reason, "Request could not be completed"),
        },
    )


def _dispatch_response(dispatch: OtpDispatch, channel: OtpChannel) -> OtpDispatchResponse:
    if dispatch.reason == ResetFailure.DELIVERY_FAILED:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "reason": dispatch.reason.value,
                "message": "OTP could not be delivered, please try again",
                "user_id": dispatch.user_id,
                "hint": dispatch.hint,
            },
        )
    if not dispatch.ok:
        raise _failure(dispatch.reason)

    destination = "email" if channel == OtpChannel.EMAIL else "mobile number"
    return OtpDispatchResponse(
        user_id=dispatch.user_id,
        channel=channel,
        hint=dispatch.hint,
        message=f"OTP sent to your registered {destination} {dispatch.hint}",
    )


def _update_response(result: PasswordUpdateResult) -> dict:
    if not result.ok:
        raise _failure(result.reason, result.message)
    return {
        "result": True,
        "message": result.message,
        "sessions_invalidated": result.sessions_invalidated,
    }


@router.post("/forgot")
async def forgot_password(
    request: ForgotPasswordRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> OtpDispatchResponse:
    """Send a reset OTP by SMS after matching username and contact number.

    Raises:
        HTTPException 400: If the username and contact do not match
        HTTPException 502: If the code was issued but could not be delivered
    """
    dispatch = await service.request_otp(request.username, OtpChannel.SMS, request.contact)
    return _dispatch_response(dispatch, OtpChannel.SMS)


@router.post("/forgot-email")
async def forgot_password_email(
    request: EmailOtpRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> OtpDispatchResponse:
    """Send a reset OTP by email after matching username and email address."""
    dispatch = await service.request_otp(request.username, OtpChannel.EMAIL, request.email)
    return _dispatch_response(dispatch, OtpChannel.EMAIL)


@router.post("/resend")
async def resend_otp(
    request: ResendOtpRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> OtpDispatchResponse:
    """Redeliver the live OTP for a user and channel."""
    dispatch = await service.redeliver_otp(request.user_id, request.channel)
    return _dispatch_response(dispatch, request.channel)


@router.post("/verify-otp")
async def verify_otp(
    request: VerifyOtpRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> dict:
    """Verify a reset OTP.

    Raises:
        HTTPException 400: With reason not_found, expired, mismatch or
            already_consumed
    """
    verification = await service.verify_otp(request.user_id, request.channel, request.otp)
    if not verification.ok:
        raise _failure(ResetFailure(verification.reason.value))
    return {"result": True, "message": "OTP verified successfully"}


@router.post("/reset")
async def reset_password(
    request: ResetPasswordRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> dict:
    """Set a new password after the OTP for this user and channel was verified.

    Raises:
        HTTPException 400: If the code was never verified, does not match the
            verified code, or its reset window has passed or been used
    """
    result = await service.reset_password(
        request.user_id,
        request.channel,
        request.otp,
        request.new_password,
        request.confirm_password,
    )
    return _update_response(result)


@router.post("/verify-and-reset")
async def verify_and_reset_password(
    request: VerifyOtpAndResetPasswordRequest,
    service: PasswordResetService = Depends(get_password_reset_service),
) -> dict:
    """Verify an SMS OTP and set the new password in one call."""
    result = await service.verify_otp_and_reset_password(
        request.username,
        request.otp,
        request.new_password,
        request.confirm_password,
    )
    return _update_response(result)


@router.post("/change")
async def change_password(
    request: ChangePasswordRequest,
    context: AuthContext = Depends(get_auth_context),
    service: PasswordResetService = Depends(get_password_reset_service),
) -> dict:
    """Change the caller's password; other sessions are signed out."""
    result = await service.change_password(
        context.user.id,
        request.current_password,
        request.new_password,
        request.confirm_new_password,
        current_session_id=context.session_id,
    )
    return _update_response(result)
