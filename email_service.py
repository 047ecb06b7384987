"""
Email service — renders lifecycle templates and delivers them.

Uses EMAIL_BACKEND config to choose transport:
  - "log" (default): writes the email to the log
  - "smtp": sends via SMTP using MAIL_* settings

Every attempt (sent, failed or skipped for opt-out) is recorded in
email_log. Sends are synchronous because the queue needs the outcome.
"""

from __future__ import annotations

import json
import logging
import smtplib
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from flask import current_app

from database import get_db, now_iso, to_iso, utcnow
from email_templates import get_template, render_email

logger = logging.getLogger(__name__)

OPT_OUT_REASON = "User opted out of marketing emails"


@dataclass
class SendResult:
    success: bool
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    message_id: str | None = None


class EmailService:
    @staticmethod
    def send(user_id: int, template: str, variables: dict | None = None,
             to_email: str | None = None) -> SendResult:
        """Render and deliver one template to one user."""
        tpl = get_template(template)
        if tpl is None:
            return SendResult(False, error=f"Unknown email template: {template}")

        user = get_db().execute(
            "SELECT id, name, email, marketing_opt_out FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if not user or not user["email"]:
            return SendResult(False, error="User not found or has no email")

        if tpl.is_marketing and user["marketing_opt_out"]:
            EmailService._log(user_id, template, "CANCELLED", {"reason": OPT_OUT_REASON})
            return SendResult(True, skipped=True, reason=OPT_OUT_REASON)

        merged = {"name": user["name"] or "there", "email": user["email"], **(variables or {})}
        recipient = to_email or user["email"]

        try:
            rendered = render_email(tpl, merged)
            message_id = EmailService._deliver(recipient, rendered)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send %s to user %s: %s", template, user_id, e)
            EmailService._log(user_id, template, "FAILED", {"error": str(e)})
            return SendResult(False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error sending %s to user %s", template, user_id)
            EmailService._log(user_id, template, "FAILED", {"error": str(e)})
            return SendResult(False, error=str(e))

        EmailService._log(user_id, template, "SENT",
                          {"message_id": message_id, "recipient": recipient})
        return SendResult(True, message_id=message_id)

    @staticmethod
    def _deliver(to: str, rendered: dict) -> str:
        """Hand a rendered email to the configured backend; returns a message ID."""
        backend = current_app.config.get("EMAIL_BACKEND", "log")

        if backend == "log":
            logger.info(
                "EMAIL [to=%s] subject=%s\n%s",
                to, rendered["subject"], rendered["text"],
            )
            return f"log-{uuid.uuid4().hex[:12]}"

        config = {
            "mail_from": current_app.config.get("MAIL_FROM", "noreply@example.com"),
            "mail_reply_to": current_app.config.get("MAIL_REPLY_TO", ""),
            "mail_server": current_app.config.get("MAIL_SERVER", "localhost"),
            "mail_port": current_app.config.get("MAIL_PORT", 587),
            "mail_username": current_app.config.get("MAIL_USERNAME", ""),
            "mail_password": current_app.config.get("MAIL_PASSWORD", ""),
        }
        return EmailService._do_send(to, rendered, config)

    @staticmethod
    def _do_send(to: str, rendered: dict, config: dict) -> str:
        """Actual SMTP send — no Flask context required."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = rendered["subject"]
        msg["From"] = config.get("mail_from", "noreply@example.com")
        msg["To"] = to
        if config.get("mail_reply_to"):
            msg["Reply-To"] = config["mail_reply_to"]
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(rendered["text"], "plain"))
        if rendered.get("html"):
            msg.attach(MIMEText(rendered["html"], "html"))

        username = config.get("mail_username", "")
        password = config.get("mail_password", "")
        with smtplib.SMTP(config.get("mail_server", "localhost"), config.get("mail_port", 587)) as smtp:
            smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
        return msg["Message-ID"]

    @staticmethod
    def _log(user_id: int, template: str, status: str, metadata: dict) -> None:
        try:
            db = get_db()
            db.execute(
                "INSERT INTO email_log (user_id, template, status, sent_at, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (user_id, template, status, now_iso(), json.dumps(metadata, default=str)),
            )
            db.commit()
        except sqlite3.Error:
            logger.exception("Failed to log email %s for user %s", template, user_id)


def was_email_sent(user_id: int, template: str, within_hours: int = 24) -> bool:
    """True if template was successfully sent to the user recently."""
    since = to_iso(utcnow() - timedelta(hours=within_hours))
    row = get_db().execute(
        "SELECT 1 FROM email_log WHERE user_id = ? AND template = ? "
        "AND status = 'SENT' AND sent_at >= ? LIMIT 1",
        (user_id, template, since),
    ).fetchone()
    return row is not None


def email_log_for_user(user_id: int) -> list[dict]:
    rows = get_db().execute(
        "SELECT id, template, status, sent_at, metadata FROM email_log "
        "WHERE user_id = ? ORDER BY id",
        (user_id,),
    ).fetchall()
    return [{**dict(r), "metadata": json.loads(r["metadata"] or "{}")} for r in rows]
