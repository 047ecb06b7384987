"""Video-hosting webhook receiver."""

from __future__ import annotations

import json
import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request

from video import handle_mux_event, verify_mux_signature

logger = logging.getLogger(__name__)

bp = Blueprint("media", __name__)


@bp.record_once
def _exempt_webhook_from_csrf(state: Any) -> None:
    """Mux signs its requests; there is no session to protect."""
    csrf = state.app.extensions.get("csrf")
    if csrf:
        csrf.exempt(api_mux_webhook)


@bp.route("/api/webhooks/mux", methods=["POST"])
def api_mux_webhook() -> tuple[Any, int] | Any:
    payload = request.get_data()
    secret = current_app.config.get("MUX_WEBHOOK_SECRET", "")

    if secret:
        if not verify_mux_signature(payload, request.headers.get("Mux-Signature", ""), secret):
            logger.warning("Mux webhook signature verification failed")
            return jsonify({"error": "Invalid signature"}), 401
    else:
        logger.warning("MUX_WEBHOOK_SECRET not set; accepting unsigned webhook")

    try:
        event = json.loads(payload)
    except ValueError:
        return jsonify({"error": "Invalid payload"}), 400
    if not isinstance(event, dict):
        return jsonify({"error": "Invalid payload"}), 400

    result = handle_mux_event(event)
    return jsonify({"received": True, **result})
