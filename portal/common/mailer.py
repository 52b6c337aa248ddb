"""
Best-effort outbound email over SMTP.

Delivery is a side channel: send_email() never raises. Callers invoke it
after their transaction has committed, so a mail failure cannot undo a
donation or a registration.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from portal.common import config

log = logging.getLogger(__name__)


def is_email_configured() -> bool:
    return bool(config.SMTP_HOST and config.EMAIL_FROM)


def send_email(to: Optional[str], subject: str, text: str, html: Optional[str] = None) -> bool:
    """
    Send one message.

    Args:
        to (str): Recipient address.
        subject (str): Subject line.
        text (str): Plain-text body.
        html (str, optional): HTML alternative body.

    Returns:
        bool: True when the SMTP server accepted the message.
    """
    if not to:
        log.warning(f"Email '{subject}' not sent: no recipient")
        return False

    if not is_email_configured():
        log.warning(f"Email '{subject}' to {to} not sent: SMTP is not configured")
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.EMAIL_FROM
    msg["To"] = to
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=10) as smtp:
            if config.SMTP_USE_TLS:
                smtp.starttls()
            if config.SMTP_USER:
                smtp.login(config.SMTP_USER, config.SMTP_PASSWORD or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        log.warning(f"Email '{subject}' to {to} failed: {e}")
        return False

    log.info(f"Email '{subject}' sent to {to}")
    return True
