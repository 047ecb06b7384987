"""
Lifecycle email triggers.

Immediate triggers send straight away through EmailService; scheduled
triggers put entries on the email queue. Callers in request handlers wrap
these in run_safely so a mail problem never fails the user's action.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app

from database import from_iso, get_db, utcnow
from email_queue import cancel_queued_emails, queue_email
from email_service import EmailService, was_email_sent
from progress import ProgressStoreDB
from subscription_store import SubscriptionStoreDB

logger = logging.getLogger(__name__)

ABANDONMENT_TEMPLATES = ["ABANDONMENT_1", "ABANDONMENT_2", "ABANDONMENT_3", "START_JOURNEY"]

START_JOURNEY_DELAY = timedelta(hours=24)
PAYMENT_FINAL_DELAY = timedelta(days=3)
INACTIVE_NUDGE_DELAY = timedelta(days=7)
RENEWAL_REMINDER_LEAD = timedelta(days=3)
ABANDONMENT_DELAYS = {
    "ABANDONMENT_1": timedelta(hours=1),
    "ABANDONMENT_2": timedelta(hours=24),
    "ABANDONMENT_3": timedelta(days=3),
}


def _url(path: str) -> str:
    return current_app.config.get("BASE_URL", "http://localhost:5001").rstrip("/") + path


def _long_date(value: datetime | str) -> str:
    """e.g. '5 March 2026'."""
    dt = from_iso(value) if isinstance(value, str) else value
    return f"{dt.day} {dt:%B %Y}"


def run_safely(func, *args, **kwargs) -> None:
    """Call a trigger, logging any failure instead of raising it."""
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Email trigger %s failed", getattr(func, "__name__", func))


# ── Immediate ────────────────────────────────────────────────

def trigger_welcome_email(user_id: int) -> None:
    """Send WELCOME now and queue START_JOURNEY for a day later."""
    if was_email_sent(user_id, "WELCOME", within_hours=24):
        logger.info("Welcome email already sent to user %s", user_id)
        return

    EmailService.send(user_id, "WELCOME", {
        "profile_url": _url("/onboarding"),
        "first_lesson_url": _url("/dashboard"),
    })
    queue_email(user_id, "START_JOURNEY", utcnow() + START_JOURNEY_DELAY, {
        "first_lesson_url": _url("/dashboard"),
    })
    logger.info("Welcome sequence started for user %s", user_id)


def trigger_module_complete_email(user_id: int, module_id: int) -> None:
    db = get_db()
    module = db.execute(
        "SELECT id, title, position FROM modules WHERE id = ?", (module_id,),
    ).fetchone()
    if not module:
        return

    next_module = db.execute(
        "SELECT id, title, description, position FROM modules "
        "WHERE published = 1 AND position > ? ORDER BY position LIMIT 1",
        (module["position"],),
    ).fetchone()
    if next_module is None:
        trigger_course_complete_email(user_id)
        return

    course = ProgressStoreDB(user_id).course_progress()
    EmailService.send(user_id, "MODULE_COMPLETE", {
        "module_number": module["position"],
        "module_title": module["title"],
        "next_module_number": next_module["position"],
        "next_module_description": next_module["description"] or "Continue your learning journey",
        "next_module_url": _url(f"/course/{next_module['id']}"),
        "progress_percentage": course.percentage,
    })


def trigger_course_complete_email(user_id: int) -> None:
    course = ProgressStoreDB(user_id).course_progress()
    EmailService.send(user_id, "COURSE_COMPLETE", {
        "lessons_completed": course.completed_lessons,
        "share_url": _url("/share/course-complete"),
        "certificate_url": _url("/certificate"),
    })


def trigger_payment_failed_email(user_id: int) -> None:
    """Notify now; queue a final warning three days out."""
    EmailService.send(user_id, "PAYMENT_FAILED", {
        "update_payment_url": _url("/dashboard/billing"),
    })
    queue_email(user_id, "PAYMENT_FAILED_FINAL", utcnow() + PAYMENT_FINAL_DELAY, {
        "update_payment_url": _url("/dashboard/billing"),
    })
    logger.info("Payment failed sequence started for user %s", user_id)


def trigger_subscription_cancelled_email(user_id: int, access_end: datetime | str) -> None:
    EmailService.send(user_id, "SUBSCRIPTION_CANCELLED", {
        "access_end_date": _long_date(access_end),
        "resubscribe_url": _url("/pricing"),
    })


# ── Scheduled ────────────────────────────────────────────────

def trigger_abandonment_sequence(user_id: int) -> None:
    """Queue the three-step upsell after the free lesson, unless subscribed."""
    if SubscriptionStoreDB(user_id).is_active():
        logger.info("Skipping abandonment sequence: user %s is subscribed", user_id)
        return

    now = utcnow()
    for template, delay in ABANDONMENT_DELAYS.items():
        queue_email(user_id, template, now + delay, {"pricing_url": _url("/pricing")})
    logger.info("Abandonment sequence queued for user %s", user_id)


def schedule_inactive_nudge(user_id: int) -> None:
    """Reset the inactivity timer: any pending nudge is replaced."""
    cancel_queued_emails(user_id, ["INACTIVE_NUDGE"])

    store = ProgressStoreDB(user_id)
    last = store.last_completed_lesson()
    upcoming = store.next_incomplete_lesson()
    queue_email(user_id, "INACTIVE_NUDGE", utcnow() + INACTIVE_NUDGE_DELAY, {
        "last_lesson": last["title"] if last else "Getting started",
        "next_lesson": upcoming["title"] if upcoming else "Your next lesson",
        "resume_url": _url("/dashboard"),
    })


def schedule_renewal_reminder(user_id: int, renewal_date: datetime, amount: int) -> None:
    """Queue a reminder three days before renewal_date. amount is in pence."""
    cancel_queued_emails(user_id, ["RENEWAL_REMINDER"])

    remind_at = renewal_date - RENEWAL_REMINDER_LEAD
    if remind_at <= utcnow():
        return

    course = ProgressStoreDB(user_id).course_progress()
    queue_email(user_id, "RENEWAL_REMINDER", remind_at, {
        "renewal_date": _long_date(renewal_date),
        "amount": f"£{amount / 100:.2f}",
        "modules_completed": course.completed_modules,
        "total_modules": course.total_modules,
        "progress_percentage": course.percentage,
        "billing_url": _url("/dashboard/billing"),
        "pricing_url": _url("/pricing"),
    })
    logger.info("Renewal reminder scheduled for user %s at %s", user_id, remind_at)


# ── Cancellation ─────────────────────────────────────────────

def cancel_abandonment_emails(user_id: int) -> None:
    result = cancel_queued_emails(user_id, ABANDONMENT_TEMPLATES)
    if result["cancelled"]:
        logger.info("Cancelled %s abandonment emails for user %s", result["cancelled"], user_id)


def cancel_payment_failed_emails(user_id: int) -> None:
    result = cancel_queued_emails(user_id, ["PAYMENT_FAILED_FINAL"])
    if result["cancelled"]:
        logger.info("Cancelled payment failed final email for user %s", user_id)


def should_trigger_abandonment_on_complete(lesson_id: int) -> bool:
    """True for a free lesson in the first module."""
    row = get_db().execute(
        "SELECT l.is_free, m.position AS module_position FROM lessons l "
        "JOIN modules m ON m.id = l.module_id WHERE l.id = ?",
        (lesson_id,),
    ).fetchone()
    return bool(row and row["is_free"] and row["module_position"] == 1)
