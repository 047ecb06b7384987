"""Stripe Payment Integration.

Handles checkout sessions, the customer portal and webhook processing.
Webhooks are the only writer of the subscriptions table; each handler
updates the row first and then fires its email/tracking side effects,
which are never allowed to fail the webhook.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from flask import current_app

from database import now_iso, to_iso
from email_triggers import (
    cancel_abandonment_emails,
    cancel_payment_failed_emails,
    run_safely,
    schedule_renewal_reminder,
    trigger_payment_failed_email,
    trigger_subscription_cancelled_email,
)
from subscription_store import (
    SubscriptionStatus,
    SubscriptionStoreDB,
    find_by_stripe_subscription,
)
from tracking import EVENTS, track_event

logger = logging.getLogger(__name__)

# Lazy import; Stripe is only needed once payments are configured
_stripe = None


def _get_stripe():
    """Lazy-load the stripe module."""
    global _stripe
    if _stripe is None:
        try:
            import stripe
            _stripe = stripe
        except ImportError:
            raise RuntimeError(
                "stripe package not installed. Run: pip install stripe"
            )
    return _stripe


def is_stripe_available() -> bool:
    """Check if Stripe is configured."""
    return bool(current_app.config.get("STRIPE_SECRET_KEY", ""))


def _configure_stripe() -> None:
    """Set the Stripe API key from Flask config."""
    stripe = _get_stripe()
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]


# ---------------------------------------------------------------------------
# Price mapping: plan name <-> Stripe Price ID
# ---------------------------------------------------------------------------

def price_for_plan(plan: str) -> str:
    prices = {
        "MONTHLY": current_app.config.get("STRIPE_PRICE_MONTHLY", ""),
        "ANNUAL": current_app.config.get("STRIPE_PRICE_ANNUAL", ""),
    }
    if plan not in prices:
        raise ValueError(f"Invalid plan: {plan}")
    if not prices[plan]:
        raise ValueError(f"No Stripe price configured for {plan}")
    return prices[plan]


def plan_for_price(price_id: str | None) -> str:
    annual = current_app.config.get("STRIPE_PRICE_ANNUAL", "")
    if annual and price_id == annual:
        return "ANNUAL"
    return "MONTHLY"


def map_stripe_status(stripe_status: str) -> str:
    """Translate a Stripe subscription status into ours."""
    if stripe_status == "past_due":
        return SubscriptionStatus.PAST_DUE
    if stripe_status in ("canceled", "unpaid"):
        return SubscriptionStatus.CANCELLED
    if stripe_status in ("incomplete", "incomplete_expired"):
        return SubscriptionStatus.INCOMPLETE
    return SubscriptionStatus.ACTIVE


def _ts(value: int | None) -> str | None:
    """Stripe epoch seconds -> stored ISO timestamp."""
    if not value:
        return None
    return to_iso(datetime.fromtimestamp(int(value), tz=timezone.utc))


def _first_item(subscription: Any) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period(subscription: Any) -> tuple[str | None, str | None]:
    """Current period bounds; newer API versions carry them on the item."""
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return _ts(start), _ts(end)


def _unit_amount(subscription: Any) -> int:
    return (_first_item(subscription).get("price") or {}).get("unit_amount") or 0


def _retrieve_subscription(subscription_id: str) -> Any:
    _configure_stripe()
    return _get_stripe().Subscription.retrieve(subscription_id)


# ---------------------------------------------------------------------------
# Checkout sessions
# ---------------------------------------------------------------------------

def create_checkout_session(
    user_id: int,
    email: str,
    plan: str,
    success_url: str = "",
    cancel_url: str = "",
) -> dict[str, Any]:
    """Create a Stripe Checkout Session for a course subscription."""
    price_id = price_for_plan(plan)
    _configure_stripe()
    stripe = _get_stripe()

    base_url = current_app.config.get("BASE_URL", "http://localhost:5001")
    if not success_url:
        success_url = f"{base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"
    if not cancel_url:
        cancel_url = f"{base_url}/pricing"

    existing = SubscriptionStoreDB(user_id).get()
    customer_kwargs: dict[str, Any] = {}
    if existing and existing.get("stripe_customer_id"):
        customer_kwargs["customer"] = existing["stripe_customer_id"]
    else:
        customer_kwargs["customer_email"] = email

    session = stripe.checkout.Session.create(
        mode="subscription",
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"user_id": str(user_id), "plan": plan},
        subscription_data={"metadata": {"user_id": str(user_id), "plan": plan}},
        **customer_kwargs,
    )

    return {
        "session_id": session.id,
        "url": session.url,
    }


# ---------------------------------------------------------------------------
# Customer portal
# ---------------------------------------------------------------------------

def create_portal_session(user_id: int) -> dict[str, str]:
    """Create a Stripe Customer Portal session for managing the subscription."""
    existing = SubscriptionStoreDB(user_id).get()
    if not existing or not existing.get("stripe_customer_id"):
        raise ValueError("No billing account found")
    _configure_stripe()
    stripe = _get_stripe()
    base_url = current_app.config.get("BASE_URL", "http://localhost:5001")

    session = stripe.billing_portal.Session.create(
        customer=existing["stripe_customer_id"],
        return_url=f"{base_url}/dashboard/billing",
    )

    return {"url": session.url}


# ---------------------------------------------------------------------------
# Webhook handling
# ---------------------------------------------------------------------------

def verify_webhook_signature(payload: bytes, sig_header: str, secret: str) -> Any:
    """Verify Stripe webhook signature and return the event object."""
    stripe = _get_stripe()
    return stripe.Webhook.construct_event(payload, sig_header, secret)


def handle_webhook_event(event: Any) -> dict[str, Any]:
    """Process a verified Stripe webhook event.

    Returns a dict describing the action taken.
    """
    event_type = event.get("type", "")
    data_obj = (event.get("data") or {}).get("object") or {}

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "invoice.paid": _handle_invoice_paid,
        "invoice.payment_failed": _handle_payment_failed,
        "customer.subscription.updated": _handle_subscription_updated,
        "customer.subscription.deleted": _handle_subscription_deleted,
    }

    handler = handlers.get(event_type)
    if handler:
        return handler(data_obj)

    logger.info("Unhandled Stripe event type: %s", event_type)
    return {"action": "ignored", "event_type": event_type}


def _handle_checkout_completed(session: Any) -> dict[str, Any]:
    """Activate the subscription bought through Checkout."""
    metadata = session.get("metadata") or {}
    user_id = metadata.get("user_id")
    subscription_id = session.get("subscription")
    if not user_id or not subscription_id:
        logger.warning("checkout.session.completed missing user_id or subscription")
        return {"action": "skipped", "reason": "missing user_id or subscription"}

    user_id = int(user_id)
    stripe_sub = _retrieve_subscription(subscription_id)
    price_id = (_first_item(stripe_sub).get("price") or {}).get("id")
    plan = plan_for_price(price_id)
    period_start, period_end = _period(stripe_sub)
    amount = _unit_amount(stripe_sub)

    SubscriptionStoreDB(user_id).upsert(
        stripe_subscription_id=subscription_id,
        stripe_customer_id=session.get("customer"),
        plan=plan,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=period_start,
        current_period_end=period_end,
        cancelled_at=None,
        payment_failed_at=None,
    )

    track_event(user_id, EVENTS.SUBSCRIPTION_STARTED, {
        "plan": plan, "subscription_id": subscription_id, "amount": amount,
    })
    run_safely(cancel_abandonment_emails, user_id)
    if period_end:
        run_safely(schedule_renewal_reminder, user_id,
                   datetime.fromisoformat(period_end), amount)

    logger.info("Subscription activated: user=%s plan=%s", user_id, plan)
    return {"action": "subscription_activated", "user_id": user_id, "plan": plan}


def _handle_invoice_paid(invoice: Any) -> dict[str, Any]:
    """Renewal (or first payment): back to ACTIVE with the new period."""
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        return {"action": "skipped", "reason": "no subscription"}

    sub = find_by_stripe_subscription(subscription_id)
    if not sub:
        logger.info("Subscription not found for invoice: %s", subscription_id)
        return {"action": "skipped", "reason": "unknown subscription"}

    user_id = sub["user_id"]
    stripe_sub = _retrieve_subscription(subscription_id)
    period_start, period_end = _period(stripe_sub)
    SubscriptionStoreDB(user_id).update(
        status=SubscriptionStatus.ACTIVE,
        current_period_start=period_start,
        current_period_end=period_end,
        payment_failed_at=None,
    )

    if invoice.get("billing_reason") == "subscription_cycle":
        track_event(user_id, EVENTS.SUBSCRIPTION_RENEWED, {
            "subscription_id": subscription_id, "amount": invoice.get("amount_paid"),
        })

    run_safely(cancel_payment_failed_emails, user_id)
    if period_end:
        run_safely(schedule_renewal_reminder, user_id,
                   datetime.fromisoformat(period_end), _unit_amount(stripe_sub))

    logger.info("Invoice paid: user=%s subscription=%s", user_id, subscription_id)
    return {"action": "invoice_paid", "user_id": user_id}


def _handle_payment_failed(invoice: Any) -> dict[str, Any]:
    """Failed renewal: PAST_DUE (soft lock) and the payment-failed emails."""
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        return {"action": "skipped", "reason": "no subscription"}

    sub = find_by_stripe_subscription(subscription_id)
    if not sub:
        logger.info("Subscription not found for failed invoice: %s", subscription_id)
        return {"action": "skipped", "reason": "unknown subscription"}

    user_id = sub["user_id"]
    SubscriptionStoreDB(user_id).update(
        status=SubscriptionStatus.PAST_DUE,
        payment_failed_at=now_iso(),
    )
    track_event(user_id, EVENTS.PAYMENT_FAILED, {
        "subscription_id": subscription_id, "invoice_id": invoice.get("id"),
    })
    run_safely(trigger_payment_failed_email, user_id)

    logger.warning("Payment failed: user=%s subscription=%s", user_id, subscription_id)
    return {"action": "payment_failed", "user_id": user_id}


def _handle_subscription_updated(subscription: Any) -> dict[str, Any]:
    """Mirror plan, status and period changes made in Stripe."""
    sub = find_by_stripe_subscription(subscription.get("id"))
    if not sub:
        logger.info("Subscription not found: %s", subscription.get("id"))
        return {"action": "skipped", "reason": "unknown subscription"}

    price_id = (_first_item(subscription).get("price") or {}).get("id")
    status = map_stripe_status(subscription.get("status", ""))
    period_start, period_end = _period(subscription)
    SubscriptionStoreDB(sub["user_id"]).update(
        plan=plan_for_price(price_id),
        status=status,
        current_period_start=period_start,
        current_period_end=period_end,
        cancelled_at=_ts(subscription.get("canceled_at")),
    )

    logger.info("Subscription updated: user=%s status=%s", sub["user_id"], status)
    return {"action": "subscription_updated", "user_id": sub["user_id"], "status": status}


def _handle_subscription_deleted(subscription: Any) -> dict[str, Any]:
    """Subscription ended: CANCELLED; access runs to the period end."""
    sub = find_by_stripe_subscription(subscription.get("id"))
    if not sub:
        logger.info("Subscription not found for deletion: %s", subscription.get("id"))
        return {"action": "skipped", "reason": "unknown subscription"}

    user_id = sub["user_id"]
    _, period_end = _period(subscription)
    period_end = period_end or sub["current_period_end"]
    fields: dict[str, Any] = {
        "status": SubscriptionStatus.CANCELLED,
        "cancelled_at": now_iso(),
    }
    if period_end:
        fields["current_period_end"] = period_end
    SubscriptionStoreDB(user_id).update(**fields)

    track_event(user_id, EVENTS.SUBSCRIPTION_CANCELLED, {"subscription_id": subscription.get("id")})
    run_safely(trigger_subscription_cancelled_email, user_id, period_end or now_iso())

    logger.info("Subscription cancelled: user=%s", user_id)
    return {"action": "subscription_cancelled", "user_id": user_id}
