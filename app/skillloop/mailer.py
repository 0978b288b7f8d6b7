"""
Outbound mail over SMTP.

Configuration comes from app.config (SMTP_SERVER, SMTP_PORT, SMTP_USE_TLS,
SMTP_USERNAME, SMTP_PASSWORD, EMAIL_FROM). When MAIL_ENABLED is false the
message is logged and kept in a bounded ``mail_outbox`` instead of sent.
"""
from __future__ import annotations

import logging
import smtplib
from collections import deque
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import Flask, current_app

logger = logging.getLogger(__name__)

MAIL_OUTBOX_LIMIT = 200


def mail_outbox(app: Flask) -> deque:
    """Suppressed messages, newest last; only the latest MAIL_OUTBOX_LIMIT are kept."""
    return app.extensions.setdefault("mail_outbox", deque(maxlen=MAIL_OUTBOX_LIMIT))


def send_email(to: str, subject: str, body: str, *, html: str | None = None) -> tuple[bool, str]:
    """
    Send one message.

    Returns:
        Tuple of (success, detail). Never raises for SMTP problems; callers decide
        whether a failed send matters.
    """
    cfg = current_app.config
    if not cfg.get("MAIL_ENABLED"):
        mail_outbox(current_app).append({"to": to, "subject": subject, "body": body, "html": html})
        logger.info("Mail disabled; not sending '%s' to %s", subject, to)
        return True, "suppressed"

    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    smtp_port = cfg.get("SMTP_PORT")
    email_from = (cfg.get("EMAIL_FROM") or "").strip()
    smtp_username = (cfg.get("SMTP_USERNAME") or "").strip()
    smtp_password = (cfg.get("SMTP_PASSWORD") or "").strip()

    if not smtp_server:
        logger.error("SMTP server not configured (SMTP_SERVER missing)")
        return False, "SMTP server not configured"
    if not email_from:
        logger.error("Email from address not configured (EMAIL_FROM missing)")
        return False, "Email from address not configured"

    if html:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = email_from
    msg["To"] = to

    try:
        server = smtplib.SMTP(smtp_server, int(smtp_port)) if smtp_port else smtplib.SMTP(smtp_server)
        try:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.send_message(msg)
        finally:
            server.quit()
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed: %s", e)
        return False, f"SMTP authentication failed: {e}"
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("SMTP error sending '%s' to %s", subject, to)
        return False, f"SMTP error: {e}"

    logger.info("Sent email to %s with subject: %s", to, subject)
    return True, "sent"
