"""SMS gateway client for OTP delivery."""

import httpx
import structlog

from src.config import Settings
from src.services.masking import mask_contact

logger = structlog.get_logger(__name__)

# Registered with the SMS gateway; the text must not change.
OTP_SMS_TEMPLATE = (
    "Dear User, {otp} is your One Time Password (OTP) for password reset. "
    "It is valid for 5 minutes. Please do not share it with anyone. - GWS HIS"
)


def format_otp_sms(otp: str) -> str:
    return OTP_SMS_TEMPLATE.format(otp=otp)


class SmsService:
    """Sends SMS messages through the configured HTTP gateway.

    Sending never raises: transport errors are logged and reported as False.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    async def send_sms(self, contact: str, message: str) -> bool:
        """Send a text message.

        Args:
            contact: Destination mobile number
            message: Message text

        Returns:
            True if the gateway accepted the message, False otherwise
        """
        if not contact or not contact.strip() or not message or not message.strip():
            logger.error("sms_missing_fields")
            return False

        if not self.settings.sms_api_base_url:
            logger.error("sms_gateway_not_configured")
            return False

        params = {
            "apikey": self.settings.sms_api_key,
            "senderid": self.settings.sms_sender_id,
            "format": self.settings.sms_format,
            "number": contact,
            "message": message,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.notification_timeout_seconds
            ) as client:
                response = await client.get(self.settings.sms_api_base_url, params=params)

            if response.is_success:
                logger.info(
                    "sms_sent",
                    contact=mask_contact(contact),
                    status_code=response.status_code,
                )
                return True

            logger.error(
                "sms_gateway_rejected",
                contact=mask_contact(contact),
                status_code=response.status_code,
            )
            return False

        except httpx.HTTPError as e:
            logger.error("sms_send_failed", contact=mask_contact(contact), error=str(e))
            return False

    async def send_otp(self, contact: str, otp: str) -> bool:
        """Send the OTP using the fixed gateway template."""
        return await self.send_sms(contact, format_otp_sms(otp))
