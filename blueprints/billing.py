"""Subscription status and Stripe payment routes."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from helpers import current_user_id, json_body
from subscription_store import PLANS, SubscriptionStoreDB

logger = logging.getLogger(__name__)

bp = Blueprint("billing", __name__)


@bp.record_once
def _exempt_webhook_from_csrf(state: Any) -> None:
    """Exempt the Stripe webhook endpoint from CSRF protection."""
    csrf = state.app.extensions.get("csrf")
    if csrf:
        csrf.exempt(api_billing_webhook)


# ---------------------------------------------------------------------------
# Subscription status
# ---------------------------------------------------------------------------

@bp.route("/api/billing/subscription")
@login_required
def api_billing_subscription() -> Any:
    from access import check_user_access

    result = check_user_access(current_user_id())
    return jsonify({
        "subscription": SubscriptionStoreDB(current_user_id()).get(),
        "has_access": result.has_access,
        "reason": result.reason,
        "soft_lock": result.soft_lock,
    })


# ---------------------------------------------------------------------------
# Stripe Checkout
# ---------------------------------------------------------------------------

@bp.route("/api/billing/checkout", methods=["POST"])
@login_required
def api_billing_checkout() -> tuple[Any, int] | Any:
    """Create a Stripe Checkout Session for the course subscription."""
    from stripe_integration import is_stripe_available, create_checkout_session

    if not is_stripe_available():
        return jsonify({"error": "Payments not configured"}), 503

    plan = str(json_body().get("plan", "")).upper()
    if plan not in PLANS:
        return jsonify({"error": "plan must be 'MONTHLY' or 'ANNUAL'"}), 400

    try:
        result = create_checkout_session(
            user_id=current_user.id,
            email=current_user.email,
            plan=plan,
        )
        return jsonify(result)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        logger.exception("Stripe checkout error")
        return jsonify({"error": "Payment service error"}), 500


# ---------------------------------------------------------------------------
# Stripe Customer Portal
# ---------------------------------------------------------------------------

@bp.route("/api/billing/portal", methods=["POST"])
@login_required
def api_billing_portal() -> tuple[Any, int] | Any:
    """Create a Stripe Customer Portal session."""
    from stripe_integration import is_stripe_available, create_portal_session

    if not is_stripe_available():
        return jsonify({"error": "Payments not configured"}), 503

    try:
        return jsonify(create_portal_session(user_id=current_user.id))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        logger.exception("Stripe portal error")
        return jsonify({"error": "Payment service error"}), 500


# ---------------------------------------------------------------------------
# Stripe Webhook
# ---------------------------------------------------------------------------

@bp.route("/api/billing/webhook", methods=["POST"])
def api_billing_webhook() -> tuple[Any, int] | Any:
    """Handle Stripe webhook events.

    This endpoint is NOT behind login_required because Stripe calls it directly.
    Authentication is via webhook signature verification.
    CSRF is exempt — Stripe uses signature-based auth instead.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature", "")
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET", "")

    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return jsonify({"error": "Webhook not configured"}), 500
    if not sig_header:
        return jsonify({"error": "Missing Stripe-Signature header"}), 400

    from stripe_integration import _get_stripe, handle_webhook_event, verify_webhook_signature
    stripe = _get_stripe()

    try:
        event = verify_webhook_signature(payload, sig_header, webhook_secret)
    except ValueError:
        logger.warning("Invalid webhook payload")
        return jsonify({"error": "Invalid payload"}), 400
    except stripe.SignatureVerificationError:
        logger.warning("Invalid webhook signature")
        return jsonify({"error": "Invalid signature"}), 400

    try:
        result = handle_webhook_event(event)
    except Exception:
        # 500 makes Stripe redeliver the event later.
        logger.exception("Webhook processing error: %s", event.get("type"))
        return jsonify({"error": "Webhook processing failed"}), 500

    logger.info("Webhook processed: %s -> %s", event.get("type"), result.get("action"))
    return jsonify({"received": True, **result})
