"""Email service for sending OTP and notification emails over SMTP."""

from email.message import EmailMessage
from email.utils import formataddr

import aiosmtplib
import structlog

from src.config import Settings
from src.services.masking import mask_email

logger = structlog.get_logger(__name__)

OTP_EMAIL_TEMPLATE = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="margin: 0;">GWS HIS</h1>
    <p>Security Verification</p>
    <h2 style="color: #667eea;">OTP Verification Required</h2>
    <p>Hello,</p>
    <p>You have requested an OTP for <strong>{purpose}</strong>.</p>
    <p><strong>Your One-Time Password (OTP) is:</strong></p>
    <div style="font-size: 25px; font-weight: bold; letter-spacing: 8px;">{otp}</div>
    <p><strong>Valid for:</strong> {expiry_minutes} minutes</p>
    <ul>
      <li>Never share this OTP with anyone</li>
      <li>GWS HIS staff will never ask for your OTP</li>
    </ul>
    <p>If you did not request this OTP, please ignore this email or contact our support team immediately.</p>
    <p style="font-size: 11px; color: #777;">This is an automated email. Please do not reply.</p>
  </div>
</body>
</html>
"""


def render_otp_email(otp: str, purpose: str, expiry_minutes: int = 5) -> str:
    return OTP_EMAIL_TEMPLATE.format(otp=otp, purpose=purpose, expiry_minutes=expiry_minutes)


class EmailService:
    """Sends HTML email through the configured SMTP relay.

    Sending never raises: failures are logged and reported as False.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    async def send_email(self, to_email: str, subject: str, html_body: str) -> bool:
        """Send an HTML email.

        Returns True on success, False on failure.
        """
        settings = self.settings

        message = EmailMessage()
        message["From"] = formataddr((settings.email_from_name, settings.email_from))
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable email client.")
        message.add_alternative(html_body, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                start_tls=settings.smtp_start_tls,
                timeout=settings.notification_timeout_seconds,
            )
            logger.info("email_sent", to=mask_email(to_email), subject=subject)
            return True

        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=mask_email(to_email), error=str(e))
            return False

    async def send_otp_email(
        self,
        to_email: str,
        otp: str,
        purpose: str = "Password Reset",
        expiry_minutes: int = 5,
    ) -> bool:
        """Send an OTP using the HTML verification template."""
        subject = f"Your OTP for {purpose}"
        body = render_otp_email(otp, purpose, expiry_minutes)
        return await self.send_email(to_email, subject, body)
