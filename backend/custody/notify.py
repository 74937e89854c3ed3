import logging
import smtplib
from email.message import EmailMessage

from . import config

logger = logging.getLogger(__name__)

EMAIL_OUTBOX: list[tuple[str, str, str]] = []
SMS_OUTBOX: list[tuple[str, str]] = []


def send_email(to_email: str, subject: str, message: str):
    if config.is_testing():
        EMAIL_OUTBOX.append((to_email, subject, message))
        return
    if not config.SMTP_SERVER:
        return
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.EMAIL_FROM
    msg["To"] = to_email
    msg.set_content(message)
    with smtplib.SMTP(config.SMTP_SERVER) as s:
        s.send_message(msg)


def send_sms(to_number: str, message: str):
    if config.is_testing():
        SMS_OUTBOX.append((to_number, message))
        return
    # no SMS gateway is wired in; delivery belongs to an external provider
    logger.info("sms to %s not delivered: no provider configured", to_number)
