"""OTP lifecycle: issue, verify and consume one-time codes per user and channel."""

import hmac
import secrets
from datetime import timedelta
from typing import Optional

import structlog

from src.models.otp import OtpChannel, OtpFailure, OtpRecord, OtpVerification
from src.services.clock import Clock, utc_now
from src.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)

MIN_OTP_LENGTH = 4
MAX_OTP_LENGTH = 6


def generate_otp(length: int = 6) -> str:
    """Uniformly random numeric code, zero-padded to ``length`` digits."""
    if not MIN_OTP_LENGTH <= length <= MAX_OTP_LENGTH:
        raise ValueError(f"OTP length must be between {MIN_OTP_LENGTH} and {MAX_OTP_LENGTH}")
    return str(secrets.randbelow(10**length)).zfill(length)


class OtpService:
    """Issues and verifies OTP codes.

    At most one code per (user, channel) is live: issuing a new code
    supersedes the previous one, and verification only ever looks at the
    newest record.
    """

    def __init__(
        self,
        store: CredentialStore,
        expiry_minutes: int = 5,
        code_length: int = 6,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.expiry_minutes = expiry_minutes
        self.code_length = code_length
        self.clock = clock

    async def issue_otp(
        self,
        user_id: int,
        channel: OtpChannel,
        expiry_minutes: Optional[int] = None,
    ) -> OtpRecord:
        """Generate and persist a fresh code.

        Args:
            user_id: Owner of the code
            channel: Channel the code will be delivered over
            expiry_minutes: Lifetime override (defaults to configuration)

        Returns:
            The stored OtpRecord (``record.code`` holds the digits)
        """
        minutes = expiry_minutes if expiry_minutes is not None else self.expiry_minutes
        now = self.clock()
        code = generate_otp(self.code_length)

        record = await self.store.insert_otp(
            user_id=user_id,
            channel=channel,
            code=code,
            created_at=now,
            expires_at=now + timedelta(minutes=minutes),
        )

        logger.info(
            "otp_issued",
            user_id=user_id,
            channel=channel.value,
            otp_id=record.id,
            expires_at=record.expires_at.isoformat(),
        )
        return record

    async def get_live_otp(self, user_id: int, channel: OtpChannel) -> Optional[OtpRecord]:
        """Return the current code if it is still unconsumed and unexpired."""
        record = await self.store.find_latest_otp(user_id, channel)
        if record is None or record.consumed or record.is_expired(self.clock()):
            return None
        return record

    async def verify_otp(
        self, user_id: int, channel: OtpChannel, submitted_code: str
    ) -> OtpVerification:
        """Check a submitted code and consume it on success.

        Expiry is checked before the code is compared, so a correct but stale
        code reports EXPIRED rather than MISMATCH.
        """
        record = await self.store.find_latest_otp(user_id, channel)
        now = self.clock()

        if record is None:
            return self._fail(user_id, channel, OtpFailure.NOT_FOUND)

        if record.consumed:
            return self._fail(user_id, channel, OtpFailure.ALREADY_CONSUMED)

        if record.is_expired(now):
            return self._fail(user_id, channel, OtpFailure.EXPIRED)

        if not hmac.compare_digest(record.code.encode(), submitted_code.strip().encode()):
            return self._fail(user_id, channel, OtpFailure.MISMATCH)

        # A concurrent verification may have consumed it first
        if not await self.store.mark_otp_consumed(record.id, now):
            return self._fail(user_id, channel, OtpFailure.ALREADY_CONSUMED)

        logger.info("otp_verified", user_id=user_id, channel=channel.value, otp_id=record.id)
        return OtpVerification.success(record.id)

    @staticmethod
    def _fail(user_id: int, channel: OtpChannel, reason: OtpFailure) -> OtpVerification:
        logger.warning(
            "otp_verification_failed",
            user_id=user_id,
            channel=channel.value,
            reason=reason.value,
        )
        return OtpVerification.failure(reason)
