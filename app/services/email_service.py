"""
Transactional email for billing events.

Sends purchase confirmations over SMTP. Delivery happens on a daemon
thread so fulfillment never waits on the mail server; when SMTP
credentials are not configured the message is logged and dropped.

Usage:
    from app.services.email_service import send_email

    send_email(
        to="user@example.com",
        subject="Your purchase is confirmed",
        template="emails/purchase_confirmation.html",
        context={"customer_name": "Jane"},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _smtp_configured(app):
    return bool(app.config.get("MAIL_USERNAME") and app.config.get("MAIL_PASSWORD"))


def _send_smtp(app, msg):
    """Deliver a built message. Runs on a background thread."""
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(app.config["MAIL_USERNAME"], app.config["MAIL_PASSWORD"])
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def build_message(app, to, subject, html_body):
    from_name = app.config.get("MAIL_FROM_NAME", "Billing")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME") or ""

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)
    msg.attach(MIMEText(html_body, "html"))
    return msg


def send_email(to, subject, template, context=None):
    """
    Render a Jinja2 template and send it as an HTML email.

    Template rendering happens in the caller's thread, so a broken
    template raises here (and is recorded by the fulfillment action).

    Returns True if the message was handed to the sender thread.
    """
    app = current_app._get_current_object()
    html_body = render_template(template, **(context or {}))

    if not _smtp_configured(app):
        logger.warning(f"Email to {to} not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
        return False

    msg = build_message(app, to, subject, html_body)

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()
    return True
