"""
Test fixtures for the course platform.

Provides app, client, auth_client, admin_client, db and course fixtures
with file-based SQLite.
"""

from __future__ import annotations

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

USER_PASSWORD = "testpass123"
ADMIN_PASSWORD = "adminpass123"


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app
    from werkzeug.security import generate_password_hash

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "WTF_CSRF_ENABLED": False,
        "EMAIL_BACKEND": "log",
        "CRON_SECRET": "cron-test-secret",
        "STRIPE_SECRET_KEY": "",
        "STRIPE_WEBHOOK_SECRET": "",
        "MUX_WEBHOOK_SECRET": "",
        "BASE_URL": "https://course.test",
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db, now_iso

        init_db()
        run_migrations()

        # Seed a learner (1) and an admin (2)
        db = get_db()
        db.execute(
            "INSERT INTO users (id, name, email, password_hash, role, created_at) "
            "VALUES (1, 'Test Student', 'test@example.com', ?, 'USER', ?)",
            (generate_password_hash(USER_PASSWORD), now_iso()),
        )
        db.execute(
            "INSERT INTO users (id, name, email, password_hash, role, created_at) "
            "VALUES (2, 'Test Admin', 'admin@example.com', ?, 'ADMIN', ?)",
            (generate_password_hash(ADMIN_PASSWORD), now_iso()),
        )
        db.commit()

        yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def auth_client(app):
    """Authenticated test client (logged in as the learner)."""
    client = app.test_client()
    with client:
        resp = client.post("/api/auth/login", json={
            "email": "test@example.com",
            "password": USER_PASSWORD,
        })
        assert resp.status_code == 200
        yield client


@pytest.fixture
def admin_client(app):
    """Authenticated test client logged in as the admin."""
    client = app.test_client()
    with client:
        resp = client.post("/api/auth/login", json={
            "email": "admin@example.com",
            "password": ADMIN_PASSWORD,
        })
        assert resp.status_code == 200
        yield client


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def course(app):
    """Two published modules with two published lessons each.

    The first lesson of module 1 is free.
    """
    with app.app_context():
        from content import create_lesson, create_module

        m1 = create_module("Foundations", "The basics", published=True)
        m2 = create_module("Architecture", "Putting it together", published=True)
        l1 = create_lesson(m1["id"], "Intro video", is_free=True, published=True)
        l2 = create_lesson(m1["id"], "Second lesson", published=True)
        l3 = create_lesson(m2["id"], "Third lesson", published=True)
        l4 = create_lesson(m2["id"], "Fourth lesson", published=True)

        return {
            "modules": [m1["id"], m2["id"]],
            "lessons": [l1["id"], l2["id"], l3["id"], l4["id"]],
        }


def set_subscription(user_id: int, status: str, period_end_days: float | None = 30,
                     stripe_subscription_id: str = "sub_test"):
    """Give a user a subscription row; call inside an app context."""
    from datetime import timedelta
    from database import to_iso, utcnow
    from subscription_store import SubscriptionStoreDB

    period_end = None
    if period_end_days is not None:
        period_end = to_iso(utcnow() + timedelta(days=period_end_days))
    return SubscriptionStoreDB(user_id).upsert(
        status=status,
        plan="MONTHLY",
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id="cus_test",
        current_period_start=to_iso(utcnow() - timedelta(days=1)),
        current_period_end=period_end,
    )
