"""Access decisions — who may view course content, and why.

check_user_access answers the subscription question with a strict
priority order; check_lesson_access layers the sequential module lock and
free-lesson rule on top of it. Both are read-only and never raise: a
storage error is logged and treated as no access.

Provides @requires_access for gating JSON endpoints.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, asdict
from functools import wraps

from flask import jsonify
from flask_login import current_user

from database import from_iso, get_db, transaction, utcnow
from progress import ProgressStoreDB
from subscription_store import SubscriptionStatus, SubscriptionStoreDB
from tracking import EVENTS, insert_event

logger = logging.getLogger(__name__)


class AccessReason:
    OVERRIDE = "override"
    SUBSCRIBED = "subscribed"
    PAST_DUE = "past_due"
    GRACE_PERIOD = "grace_period"
    FREE = "free"
    NO_ACCESS = "no_access"
    MODULE_LOCKED = "module_locked"
    NOT_FOUND = "not_found"


@dataclass
class AccessResult:
    has_access: bool
    reason: str
    soft_lock: bool = False
    subscription: dict | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LessonAccessResult(AccessResult):
    is_free: bool = False
    module_unlocked: bool = False
    locked_by_module: int | None = None


def _no_access() -> AccessResult:
    return AccessResult(has_access=False, reason=AccessReason.NO_ACCESS)


def _decide(user_id: int) -> AccessResult:
    user = get_db().execute(
        "SELECT id, access_override FROM users WHERE id = ?", (user_id,),
    ).fetchone()
    if not user:
        return _no_access()
    subscription = SubscriptionStoreDB(user_id).get()

    if user["access_override"]:
        return AccessResult(True, AccessReason.OVERRIDE, subscription=subscription)

    if subscription is None:
        return _no_access()

    status = subscription["status"]
    if status == SubscriptionStatus.ACTIVE:
        return AccessResult(True, AccessReason.SUBSCRIBED, subscription=subscription)

    if status == SubscriptionStatus.PAST_DUE:
        # Keep content available while the card is retried; the UI shows a banner.
        return AccessResult(True, AccessReason.PAST_DUE, soft_lock=True,
                            subscription=subscription)

    if status == SubscriptionStatus.CANCELLED:
        period_end = from_iso(subscription["current_period_end"])
        if period_end is not None and period_end > utcnow():
            return AccessResult(True, AccessReason.GRACE_PERIOD, subscription=subscription)

    return AccessResult(False, AccessReason.NO_ACCESS, subscription=subscription)


def check_user_access(user_id: int) -> AccessResult:
    """Subscription-level access decision for one user."""
    try:
        return _decide(user_id)
    except sqlite3.Error:
        logger.exception("Access check failed for user %s", user_id)
        return _no_access()


def check_lesson_access(user_id: int, lesson_id: int) -> LessonAccessResult:
    """Access decision for a single lesson, including the module lock."""
    try:
        lesson = get_db().execute(
            "SELECT l.id, l.module_id, l.is_free, l.published, m.published AS module_published "
            "FROM lessons l JOIN modules m ON m.id = l.module_id WHERE l.id = ?",
            (lesson_id,),
        ).fetchone()
        if not lesson or not lesson["published"] or not lesson["module_published"]:
            return LessonAccessResult(False, AccessReason.NOT_FOUND)

        is_free = bool(lesson["is_free"])
        store = ProgressStoreDB(user_id)
        if not store.is_module_unlocked(lesson["module_id"]):
            return LessonAccessResult(
                False, AccessReason.MODULE_LOCKED,
                is_free=is_free,
                module_unlocked=False,
                locked_by_module=store.locked_by_module(),
            )

        if is_free:
            return LessonAccessResult(True, AccessReason.FREE, is_free=True, module_unlocked=True)

        base = _decide(user_id)
        return LessonAccessResult(
            base.has_access, base.reason,
            soft_lock=base.soft_lock,
            subscription=base.subscription,
            is_free=False,
            module_unlocked=True,
        )
    except sqlite3.Error:
        logger.exception("Lesson access check failed for user %s lesson %s", user_id, lesson_id)
        return LessonAccessResult(False, AccessReason.NO_ACCESS)


def toggle_access_override(user_id: int, admin_id: int, override: bool) -> None:
    """Set a user's override flag and record who did it, atomically.

    Raises LookupError for an unknown user; storage errors propagate and
    leave both the flag and the audit event unwritten.
    """
    if not isinstance(override, bool):
        raise ValueError("override must be a boolean")
    with transaction() as db:
        cur = db.execute(
            "UPDATE users SET access_override = ? WHERE id = ?", (int(override), user_id),
        )
        if cur.rowcount == 0:
            raise LookupError("User not found")
        insert_event(
            db, admin_id,
            EVENTS.ACCESS_OVERRIDE_GRANTED if override else EVENTS.ACCESS_OVERRIDE_REVOKED,
            {"target_user_id": user_id, "admin_id": admin_id},
        )
    logger.info("Access override %s for user %s by admin %s",
                "granted" if override else "revoked", user_id, admin_id)


def requires_access(f):
    """Decorator that gates an endpoint behind course access."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required"}), 401

        result = check_user_access(current_user.id)
        if not result.has_access:
            return jsonify({
                "error": "An active subscription is required to access this content",
                "reason": result.reason,
            }), 403

        return f(*args, **kwargs)
    return decorated
