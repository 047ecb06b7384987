"""
In-process scheduler for the email queue.

Jobs:
  - Process due queued emails (every EMAIL_QUEUE_INTERVAL_MINUTES)

Opt-in via EMAIL_QUEUE_SCHEDULER_ENABLED. Deployments with an external
cron hitting /api/cron/process-emails leave it off.
"""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler


def run_email_queue(app) -> dict | None:
    """One queue run inside an application context."""
    with app.app_context():
        from email_queue import process_email_queue
        try:
            return process_email_queue()
        except Exception:
            app.logger.exception("Scheduled email queue run failed")
            return None


def init_scheduler(app):
    """Start the background scheduler. Returns it, or None when disabled."""
    if not app.config.get("EMAIL_QUEUE_SCHEDULER_ENABLED"):
        return None

    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        func=run_email_queue,
        args=[app],
        trigger="interval",
        minutes=app.config.get("EMAIL_QUEUE_INTERVAL_MINUTES", 5),
        id="email_queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    app.logger.info("Email queue scheduler started (every %s min)",
                    app.config.get("EMAIL_QUEUE_INTERVAL_MINUTES", 5))
    return scheduler
