"""Cron endpoints — called by an external scheduler with a shared secret."""

from __future__ import annotations

import hmac
import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request

from email_queue import pending_email_count, process_email_queue, queue_stats

logger = logging.getLogger(__name__)

bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@bp.record_once
def _exempt_from_csrf(state: Any) -> None:
    """Cron callers authenticate with CRON_SECRET, not a session."""
    csrf = state.app.extensions.get("csrf")
    if csrf:
        csrf.exempt(api_process_emails)


def _authorized() -> bool:
    secret = current_app.config.get("CRON_SECRET", "")
    if not secret:
        # No secret configured: only allowed outside production
        return current_app.debug or current_app.testing
    auth = request.headers.get("Authorization", "")
    supplied = auth[7:] if auth.startswith("Bearer ") else request.headers.get("X-Cron-Secret", "")
    return hmac.compare_digest(supplied.encode(), secret.encode())


@bp.route("/process-emails", methods=["POST"])
def api_process_emails() -> tuple[Any, int] | Any:
    if not _authorized():
        logger.warning("Rejected cron call from %s", request.remote_addr)
        return jsonify({"error": "Unauthorized"}), 401

    results = process_email_queue()
    return jsonify({"success": True, **results})


@bp.route("/process-emails", methods=["GET"])
def api_email_queue_stats() -> tuple[Any, int] | Any:
    if not _authorized():
        return jsonify({"error": "Unauthorized"}), 401
    return jsonify({"pending": pending_email_count(), "stats": queue_stats()})
