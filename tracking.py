"""
Event tracking — records analytics and admin audit events.

Events are written to both the events table and structured logging.
Tracking never raises: a failed insert is logged and the caller carries on.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from database import get_db, now_iso

logger = logging.getLogger(__name__)


class EVENTS:
    SIGNUP_COMPLETED = "signup_completed"

    VIDEO_1_COMPLETED = "video_1_completed"
    LESSON_COMPLETED = "lesson_completed"
    MODULE_COMPLETED = "module_completed"
    COURSE_COMPLETED = "course_completed"

    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_FAILED = "payment_failed"

    ACCESS_OVERRIDE_GRANTED = "access_override_granted"
    ACCESS_OVERRIDE_REVOKED = "access_override_revoked"


def insert_event(db: sqlite3.Connection, user_id: int | None, name: str,
                 properties: dict[str, Any] | None = None) -> None:
    """Insert an event row on an existing connection without committing.

    Used where the event must share a transaction with another write.
    """
    db.execute(
        "INSERT INTO events (user_id, name, properties, created_at) VALUES (?, ?, ?, ?)",
        (user_id, name, json.dumps(properties or {}, default=str), now_iso()),
    )


def track_event(user_id: int | None, name: str, properties: dict[str, Any] | None = None) -> None:
    """Insert an analytics event and emit a structured log line."""
    try:
        db = get_db()
        insert_event(db, user_id, name, properties)
        db.commit()
    except sqlite3.Error:
        logger.exception("Failed to track event %s for user %s", name, user_id)
        return

    logger.info("event: %s user_id=%s", name, user_id)


def events_for_user(user_id: int, name: str | None = None) -> list[dict]:
    db = get_db()
    sql = "SELECT id, user_id, name, properties, created_at FROM events WHERE user_id = ?"
    params: list[Any] = [user_id]
    if name:
        sql += " AND name = ?"
        params.append(name)
    rows = db.execute(sql + " ORDER BY id", params).fetchall()
    return [
        {**dict(r), "properties": json.loads(r["properties"] or "{}")}
        for r in rows
    ]
