"""
Email queue — deferred lifecycle emails.

Entries are persisted with a due time and picked up by process_email_queue,
which is invoked periodically (cron endpoint or the in-process scheduler).
Every state transition is a single UPDATE, so an interrupted run is safe to
repeat.

Statuses: PENDING -> SENT | FAILED | CANCELLED.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta

from flask import current_app

from database import get_db, now_iso, to_iso, utcnow
from email_service import EmailService
from email_templates import get_template
from subscription_store import SubscriptionStatus

logger = logging.getLogger(__name__)

PENDING = "PENDING"
SENT = "SENT"
FAILED = "FAILED"
CANCELLED = "CANCELLED"


def queue_email(user_id: int, template: str, scheduled_for: datetime,
                data: dict | None = None) -> dict:
    """Schedule one email. At most one PENDING entry per (user, template)."""
    if get_template(template) is None:
        return {"success": False, "error": f"Unknown email template: {template}"}
    try:
        db = get_db()
        existing = db.execute(
            "SELECT id FROM email_queue WHERE user_id = ? AND template = ? AND status = ?",
            (user_id, template, PENDING),
        ).fetchone()
        if existing:
            return {"success": False, "error": f"Email {template} already queued for this user"}

        cur = db.execute(
            "INSERT INTO email_queue (user_id, template, scheduled_for, status, data, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, template, to_iso(scheduled_for), PENDING,
             json.dumps(data or {}, default=str), now_iso()),
        )
        db.commit()
        return {"success": True, "queue_id": cur.lastrowid}
    except sqlite3.Error as e:
        logger.exception("Failed to queue %s for user %s", template, user_id)
        return {"success": False, "error": str(e)}


def queue_emails(entries: list[dict]) -> dict:
    """Queue several emails; each entry has user_id, template, scheduled_for, data."""
    errors: list[str] = []
    queued = 0
    for entry in entries:
        result = queue_email(
            entry["user_id"], entry["template"], entry["scheduled_for"], entry.get("data"),
        )
        if result["success"]:
            queued += 1
        else:
            errors.append(f"{entry['template']}: {result['error']}")
    return {"success": not errors, "queued": queued, "errors": errors}


def cancel_queued_emails(user_id: int, templates: list[str] | None = None) -> dict:
    """Cancel a user's PENDING entries, optionally only for some templates."""
    sql = "UPDATE email_queue SET status = ?, processed_at = ? WHERE user_id = ? AND status = ?"
    params: list = [CANCELLED, now_iso(), user_id, PENDING]
    if templates is not None:
        if not templates:
            return {"cancelled": 0}
        sql += f" AND template IN ({', '.join('?' for _ in templates)})"
        params.extend(templates)
    db = get_db()
    cur = db.execute(sql, params)
    db.commit()
    return {"cancelled": cur.rowcount}


def cancel_queued_email(queue_id: int) -> dict:
    db = get_db()
    cur = db.execute(
        "UPDATE email_queue SET status = ?, processed_at = ? WHERE id = ? AND status = ?",
        (CANCELLED, now_iso(), queue_id, PENDING),
    )
    db.commit()
    if cur.rowcount == 0:
        return {"success": False, "error": "No pending email with that ID"}
    return {"success": True}


def _finish(db, entry_id: int, status: str, when: str, error: str | None = None,
            retry_count: int | None = None) -> None:
    if retry_count is None:
        db.execute(
            "UPDATE email_queue SET status = ?, processed_at = ?, error = ? WHERE id = ?",
            (status, when, error, entry_id),
        )
    else:
        db.execute(
            "UPDATE email_queue SET status = ?, processed_at = ?, error = ?, retry_count = ? "
            "WHERE id = ?",
            (status, when, error, retry_count, entry_id),
        )
    db.commit()


def process_email_queue(now: datetime | None = None) -> dict:
    """Send every due PENDING entry (one batch).

    Returns counters: processed, sent, failed, skipped. Entries that failed
    but will be retried on the next run are not counted as processed.
    """
    batch_size = current_app.config.get("EMAIL_QUEUE_BATCH_SIZE", 100)
    max_retries = current_app.config.get("EMAIL_QUEUE_MAX_RETRIES", 3)
    stale_days = current_app.config.get("EMAIL_QUEUE_STALE_DAYS", 7)

    now = now or utcnow()
    now_s = to_iso(now)
    stale_s = to_iso(now - timedelta(days=stale_days))
    results = {"processed": 0, "sent": 0, "failed": 0, "skipped": 0}

    db = get_db()
    due = db.execute(
        "SELECT q.id, q.user_id, q.template, q.scheduled_for, q.retry_count, q.data, "
        "u.id AS found_user, u.email AS user_email, s.status AS subscription_status "
        "FROM email_queue q "
        "LEFT JOIN users u ON u.id = q.user_id "
        "LEFT JOIN subscriptions s ON s.user_id = q.user_id "
        "WHERE q.status = ? AND q.scheduled_for <= ? "
        "ORDER BY q.scheduled_for, q.id LIMIT ?",
        (PENDING, now_s, batch_size),
    ).fetchall()

    for entry in due:
        results["processed"] += 1
        try:
            if entry["scheduled_for"] < stale_s:
                _finish(db, entry["id"], CANCELLED, now_s,
                        f"Email expired (scheduled more than {stale_days} days ago)")
                results["skipped"] += 1
                continue

            if entry["found_user"] is None or not entry["user_email"]:
                _finish(db, entry["id"], CANCELLED, now_s, "User not found or has no email")
                results["skipped"] += 1
                continue

            if (entry["template"].startswith("ABANDONMENT")
                    and entry["subscription_status"] == SubscriptionStatus.ACTIVE):
                _finish(db, entry["id"], CANCELLED, now_s, "User subscribed since email was queued")
                results["skipped"] += 1
                continue

            variables = json.loads(entry["data"] or "{}")
            sent = EmailService.send(entry["user_id"], entry["template"], variables)

            if sent.success and sent.skipped:
                _finish(db, entry["id"], CANCELLED, now_s, sent.reason)
                results["skipped"] += 1
            elif sent.success:
                _finish(db, entry["id"], SENT, now_s)
                results["sent"] += 1
            else:
                retries = entry["retry_count"] + 1
                if retries >= max_retries:
                    _finish(db, entry["id"], FAILED, now_s, sent.error, retry_count=retries)
                    results["failed"] += 1
                else:
                    # scheduled_for is left alone, so the next run picks it up again.
                    db.execute(
                        "UPDATE email_queue SET retry_count = ?, error = ? WHERE id = ?",
                        (retries, sent.error, entry["id"]),
                    )
                    db.commit()
                    results["processed"] -= 1
        except Exception as e:
            logger.exception("Error processing queued email %s", entry["id"])
            if db.in_transaction:
                db.rollback()
            _finish(db, entry["id"], FAILED, now_s, str(e) or e.__class__.__name__)
            results["failed"] += 1

    if due:
        logger.info("Email queue run: %s", results)
    return results


def pending_email_count() -> int:
    row = get_db().execute(
        "SELECT COUNT(*) AS n FROM email_queue WHERE status = ?", (PENDING,),
    ).fetchone()
    return row["n"]


def queue_stats() -> dict:
    rows = get_db().execute(
        "SELECT status, COUNT(*) AS n FROM email_queue GROUP BY status"
    ).fetchall()
    stats = {"pending": 0, "sent": 0, "failed": 0, "cancelled": 0}
    for r in rows:
        stats[r["status"].lower()] = r["n"]
    return stats


def pending_for_user(user_id: int) -> list[dict]:
    rows = get_db().execute(
        "SELECT id, template, scheduled_for, retry_count, data FROM email_queue "
        "WHERE user_id = ? AND status = ? ORDER BY scheduled_for",
        (user_id, PENDING),
    ).fetchall()
    return [{**dict(r), "data": json.loads(r["data"] or "{}")} for r in rows]
