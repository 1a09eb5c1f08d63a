"""Password reset orchestration: identify, dispatch OTP, verify, commit."""

import asyncio
import hmac
from datetime import timedelta
from typing import Optional
from uuid import UUID

import structlog

from src.config import PasswordPolicy
from src.models.otp import OtpChannel, OtpVerification
from src.models.password_reset import (
    OtpDispatch,
    PasswordUpdateResult,
    ResetFailure,
    ResetIdentity,
)
from src.models.session import SessionStatus
from src.models.user import User
from src.services.auth_service import AuthService
from src.services.clock import Clock, utc_now
from src.services.credential_store import CredentialStore
from src.services.email_service import EmailService
from src.services.masking import mask_contact, mask_email
from src.services.otp_service import OtpService
from src.services.password_policy import validate_password
from src.services.session_service import SessionService
from src.services.sms_service import SmsService

logger = structlog.get_logger(__name__)

OTP_PURPOSE = "Password Reset"


class PasswordResetService:
    """End-to-end password reset over SMS or email.

    A verified OTP grants exactly one password update for its (user, channel)
    within ``reset_grace``. Committing a new password closes every session the
    user has open.
    """

    def __init__(
        self,
        store: CredentialStore,
        otp_service: OtpService,
        session_service: SessionService,
        auth_service: AuthService,
        sms_service: SmsService,
        email_service: EmailService,
        policy: PasswordPolicy,
        reset_grace: timedelta = timedelta(minutes=10),
        notification_timeout: float = 30,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.otp_service = otp_service
        self.session_service = session_service
        self.auth_service = auth_service
        self.sms_service = sms_service
        self.email_service = email_service
        self.policy = policy
        self.reset_grace = reset_grace
        self.notification_timeout = notification_timeout
        self.clock = clock

    async def _identify(
        self,
        username: str,
        contact: Optional[str] = None,
        email: Optional[str] = None,
    ) -> tuple[ResetIdentity, Optional[User]]:
        found = await self.store.find_user_by_username(username)
        if found is None or not found[0].is_active:
            return ResetIdentity(ok=False, reason=ResetFailure.USER_NOT_FOUND), None

        user, _ = found

        if email is not None:
            if not user.email or user.email.strip().casefold() != email.strip().casefold():
                return ResetIdentity(ok=False, reason=ResetFailure.EMAIL_MISMATCH), None
            return (
                ResetIdentity(
                    ok=True,
                    user_id=user.id,
                    channel=OtpChannel.EMAIL,
                    hint=mask_email(user.email),
                ),
                user,
            )

        if not user.contact or contact is None or user.contact.strip() != contact.strip():
            return ResetIdentity(ok=False, reason=ResetFailure.CONTACT_MISMATCH), None
        return (
            ResetIdentity(
                ok=True,
                user_id=user.id,
                channel=OtpChannel.SMS,
                hint=mask_contact(user.contact),
            ),
            user,
        )

    async def validate_user_for_reset(
        self,
        username: str,
        contact: Optional[str] = None,
        email: Optional[str] = None,
    ) -> ResetIdentity:
        """Match a username against its registered contact number or email.

        Pass ``email`` for the email channel, otherwise ``contact`` is checked.
        Email comparison is case-insensitive.
        """
        identity, _ = await self._identify(username, contact=contact, email=email)
        if not identity.ok:
            logger.warning(
                "reset_identify_failed",
                username=username,
                reason=identity.reason.value,
            )
        return identity

    async def request_otp(
        self,
        username: str,
        channel: OtpChannel,
        destination: str,
    ) -> OtpDispatch:
        """Identify the user, issue a fresh code and deliver it.

        The OTP is committed before dispatch, so a delivery failure leaves a
        valid, verifiable code behind.
        """
        if channel == OtpChannel.EMAIL:
            identity, user = await self._identify(username, email=destination)
        else:
            identity, user = await self._identify(username, contact=destination)

        if not identity.ok:
            logger.warning("reset_identify_failed", username=username, reason=identity.reason.value)
            return OtpDispatch(ok=False, reason=identity.reason)

        record = await self.otp_service.issue_otp(user.id, channel)
        delivered = await self._deliver(user, channel, record.code)

        if not delivered:
            return OtpDispatch(
                ok=False,
                reason=ResetFailure.DELIVERY_FAILED,
                user_id=user.id,
                hint=identity.hint,
            )
        return OtpDispatch(ok=True, user_id=user.id, hint=identity.hint)

    async def redeliver_otp(self, user_id: int, channel: OtpChannel) -> OtpDispatch:
        """Resend the live code without issuing a new one."""
        found = await self.store.find_user_by_id(user_id)
        if found is None or not found[0].is_active:
            return OtpDispatch(ok=False, reason=ResetFailure.USER_NOT_FOUND)

        user, _ = found
        record = await self.otp_service.get_live_otp(user_id, channel)
        if record is None:
            return OtpDispatch(ok=False, reason=ResetFailure.NOT_FOUND, user_id=user_id)

        hint = mask_email(user.email) if channel == OtpChannel.EMAIL else mask_contact(user.contact)
        if not await self._deliver(user, channel, record.code):
            return OtpDispatch(
                ok=False,
                reason=ResetFailure.DELIVERY_FAILED,
                user_id=user_id,
                hint=hint,
            )
        return OtpDispatch(ok=True, user_id=user_id, hint=hint)

    async def _deliver(self, user: User, channel: OtpChannel, code: str) -> bool:
        if channel == OtpChannel.EMAIL:
            if not user.email:
                return False
            send = self.email_service.send_otp_email(
                user.email,
                code,
                OTP_PURPOSE,
                self.otp_service.expiry_minutes,
            )
        else:
            if not user.contact:
                return False
            send = self.sms_service.send_otp(user.contact, code)

        try:
            delivered = await asyncio.wait_for(send, timeout=self.notification_timeout)
        except asyncio.TimeoutError:
            delivered = False

        if not delivered:
            logger.error("reset_otp_delivery_failed", user_id=user.id, channel=channel.value)
        else:
            logger.info("reset_otp_delivered", user_id=user.id, channel=channel.value)
        return delivered

    async def verify_otp(
        self, user_id: int, channel: OtpChannel, code: str
    ) -> OtpVerification:
        """Verify a reset code; success opens the one-shot update window."""
        return await self.otp_service.verify_otp(user_id, channel, code)

    def _check_new_password(
        self, new_password: str, confirm_password: str
    ) -> Optional[PasswordUpdateResult]:
        if new_password != confirm_password:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.MISMATCH,
                message="Password and confirm password do not match",
            )
        error = validate_password(new_password, self.policy)
        if error is not None:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.POLICY_VIOLATION,
                message=error,
            )
        return None

    async def reset_password(
        self,
        user_id: int,
        channel: OtpChannel,
        otp: str,
        new_password: str,
        confirm_password: str,
    ) -> PasswordUpdateResult:
        """Commit a new password using the grant from a verified OTP.

        ``otp`` must equal the code that was verified; the grant is spent only
        once the new password has been hashed.
        """
        rejected = self._check_new_password(new_password, confirm_password)
        if rejected is not None:
            return rejected

        now = self.clock()
        record = await self.store.find_latest_otp(user_id, channel)

        if record is None or not record.consumed:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.NOT_FOUND,
                message="OTP has not been verified",
            )

        if not hmac.compare_digest(record.code.encode(), otp.strip().encode()):
            logger.warning("reset_otp_mismatch", user_id=user_id, channel=channel.value)
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.MISMATCH,
                message="Invalid OTP",
            )

        if record.reset_used_at is not None:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.ALREADY_CONSUMED,
                message="OTP has already been used",
            )

        if now >= record.consumed_at + self.reset_grace:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.EXPIRED,
                message="Password reset window has expired, request a new OTP",
            )

        password_hash = self.auth_service.hash_password(new_password)

        if not await self.store.claim_reset_grant(record.id, now):
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.ALREADY_CONSUMED,
                message="OTP has already been used",
            )

        return await self._commit(user_id, password_hash, "password_reset")


    async def verify_otp_and_reset_password(
        self,
        username: str,
        otp: str,
        new_password: str,
        confirm_password: str,
    ) -> PasswordUpdateResult:
        """Verify an SMS code and commit the new password in one step."""
        # Reject a bad password before the code is consumed
        rejected = self._check_new_password(new_password, confirm_password)
        if rejected is not None:
            return rejected

        found = await self.store.find_user_by_username(username)
        if found is None or not found[0].is_active:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.USER_NOT_FOUND,
                message="Invalid username or OTP",
            )

        user, _ = found
        verification = await self.otp_service.verify_otp(user.id, OtpChannel.SMS, otp)
        if not verification.ok:
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure(verification.reason.value),
            )

        return await self.reset_password(
            user.id, OtpChannel.SMS, otp, new_password, confirm_password
        )

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        confirm_password: str,
        current_session_id: Optional[UUID] = None,
    ) -> PasswordUpdateResult:
        """Authenticated password change; every other session is closed."""
        rejected = self._check_new_password(new_password, confirm_password)
        if rejected is not None:
            return rejected

        found = await self.store.find_user_by_id(user_id)
        if found is None:
            return PasswordUpdateResult(ok=False, reason=ResetFailure.USER_NOT_FOUND)

        _, password_hash = found
        if not self.auth_service.verify_password(current_password, password_hash):
            return PasswordUpdateResult(
                ok=False,
                reason=ResetFailure.MISMATCH,
                message="Current password is incorrect",
            )

        return await self._commit(
            user_id,
            self.auth_service.hash_password(new_password),
            "password_change",
            except_session_id=current_session_id,
        )

    async def _commit(
        self,
        user_id: int,
        password_hash: str,
        reason: str,
        except_session_id: Optional[UUID] = None,
    ) -> PasswordUpdateResult:
        if not await self.store.update_password_hash(user_id, password_hash, self.clock()):
            return PasswordUpdateResult(ok=False, reason=ResetFailure.USER_NOT_FOUND)

        # Force re-login everywhere after a credential change
        closed = await self.session_service.invalidate_all_user_sessions(
            user_id,
            reason=reason,
            status=SessionStatus.REVOKED,
            except_session_id=except_session_id,
        )

        logger.info(
            "password_updated",
            user_id=user_id,
            reason=reason,
            sessions_invalidated=closed,
        )
        return PasswordUpdateResult(
            ok=True,
            message="Password updated successfully",
            sessions_invalidated=closed,
        )
