import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Optional

from errors import DeliveryFailed

EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
MAIL_TIMEOUT = float(os.getenv("MAIL_TIMEOUT", 10))

logger = logging.getLogger(__name__)


class Mailer:
    """Sends one plain-text message per call over SMTP with STARTTLS."""

    def __init__(self, host: str, port: int, username: Optional[str], password: Optional[str],
                 timeout: float = MAIL_TIMEOUT):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    def send_mail(self, to: str, subject: str, body: str) -> None:
        if not self.username or not self.password:
            logger.warning("Mail delivery not configured, dropping message to %s", to)
            raise DeliveryFailed()

        msg = EmailMessage()
        msg["From"] = self.username
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Mail delivery to %s failed: %s", to, exc)
            raise DeliveryFailed() from exc


mailer = Mailer(SMTP_HOST, SMTP_PORT, EMAIL_USER, EMAIL_PASS)


def get_mailer() -> Mailer:
    return mailer


OTP_SUBJECT = "Your OTP Code - cars2customer"
OTP_BODY = """Dear Customer,

Thank you for choosing cars2customer!

Your OTP code is {otp}. Please use this code to complete your verification process. It will expire in {minutes} minutes, so be sure to enter it promptly.

If you did not request this code, please contact our support team immediately.

Best regards,
The cars2customer Team
"""

RESET_SUBJECT = "Password Reset OTP - cars2customer"
RESET_BODY = """Dear Customer,

It looks like you requested to reset your password for your cars2customer account.

Your OTP code is {otp}. Please use this code to complete the password reset process. It will expire in {minutes} minutes, so be sure to enter it promptly.

If you did not request this code, please contact our support team immediately.

Best regards,
The cars2customer Team
"""
