"""Subscriptions — one optional row per user.

Rows are created and mutated only by the billing webhook handlers in
stripe_integration.py; the rest of the app treats them as read-only.
"""

from __future__ import annotations

from database import get_db, now_iso


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    INCOMPLETE = "INCOMPLETE"

    ALL = (ACTIVE, PAST_DUE, CANCELLED, INCOMPLETE)


PLANS = ("MONTHLY", "ANNUAL")

PLAN_DISPLAY = {
    "MONTHLY": "Monthly",
    "ANNUAL": "Annual",
}

_UPDATABLE = {
    "status", "plan", "stripe_subscription_id", "stripe_customer_id",
    "current_period_start", "current_period_end", "cancelled_at",
    "payment_failed_at",
}


class SubscriptionStoreDB:
    """DB-backed subscription for a single user."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def get(self) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM subscriptions WHERE user_id = ?", (self.user_id,),
        ).fetchone()
        return dict(row) if row else None

    def upsert(self, **fields) -> dict:
        """Create the row or overwrite the given columns."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
        if "status" in fields and fields["status"] not in SubscriptionStatus.ALL:
            raise ValueError(f"Invalid status: {fields['status']}")
        if "plan" in fields and fields["plan"] not in PLANS:
            raise ValueError(f"Invalid plan: {fields['plan']}")

        now = now_iso()
        db = get_db()
        if self.get() is None:
            cols = ["user_id", "created_at", "updated_at", *fields]
            db.execute(
                f"INSERT INTO subscriptions ({', '.join(cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)})",
                (self.user_id, now, now, *fields.values()),
            )
        else:
            assignments = ", ".join(f"{k} = ?" for k in [*fields, "updated_at"])
            db.execute(
                f"UPDATE subscriptions SET {assignments} WHERE user_id = ?",
                (*fields.values(), now, self.user_id),
            )
        db.commit()
        return self.get()

    def update(self, **fields) -> dict | None:
        """Update an existing row; returns None when there is none."""
        if self.get() is None:
            return None
        return self.upsert(**fields)

    def status(self) -> str | None:
        sub = self.get()
        return sub["status"] if sub else None

    def is_active(self) -> bool:
        return self.status() == SubscriptionStatus.ACTIVE


def find_by_stripe_subscription(stripe_subscription_id: str) -> dict | None:
    if not stripe_subscription_id:
        return None
    row = get_db().execute(
        "SELECT * FROM subscriptions WHERE stripe_subscription_id = ?",
        (stripe_subscription_id,),
    ).fetchone()
    return dict(row) if row else None


def find_by_stripe_customer(stripe_customer_id: str) -> dict | None:
    if not stripe_customer_id:
        return None
    row = get_db().execute(
        "SELECT * FROM subscriptions WHERE stripe_customer_id = ?",
        (stripe_customer_id,),
    ).fetchone()
    return dict(row) if row else None
