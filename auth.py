"""
User Authentication — Flask-Login blueprint.

Provides JSON signup, login, logout and current-user routes.
Uses werkzeug.security for password hashing.
"""

from __future__ import annotations

import math
from datetime import timedelta

from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from database import from_iso, get_db, now_iso, to_iso, utcnow
from email_triggers import run_safely, trigger_welcome_email
from extensions import limiter
from tracking import EVENTS, track_event

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, name: str, email: str, role: str = "USER"):
        self.id = id
        self.name = name
        self.email = email
        self.role = role

    @property
    def is_admin(self):
        return self.role == "ADMIN"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}

    @staticmethod
    def get(user_id: int):
        row = get_db().execute(
            "SELECT id, name, email, role FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"], row["role"])
        return None

    @staticmethod
    def get_by_email(email: str):
        return get_db().execute(
            "SELECT id, name, email, password_hash, role, login_attempts, locked_until "
            "FROM users WHERE email = ?", (email,),
        ).fetchone()


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isalpha() for c in password):
        return "Password must contain at least one letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def create_user(name: str, email: str, password: str, role: str = "USER") -> int:
    db = get_db()
    cur = db.execute(
        "INSERT INTO users (name, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
        (name, email, generate_password_hash(password), role, now_iso()),
    )
    db.commit()
    return cur.lastrowid


@auth_bp.route("/signup", methods=["POST"])
@limiter.limit("5 per hour")
def signup():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400
    if "@" not in email:
        return jsonify({"error": "Invalid email address."}), 400

    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400

    if User.get_by_email(email):
        return jsonify({"error": "An account with this email already exists."}), 409

    user_id = create_user(name, email, password)
    track_event(user_id, EVENTS.SIGNUP_COMPLETED, {"method": "email"})
    run_safely(trigger_welcome_email, user_id)

    user = User(user_id, name, email)
    login_user(user, remember=True)
    return jsonify({"success": True, "user": user.to_dict()}), 201


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    row = User.get_by_email(email)
    if not row:
        return jsonify({"error": "Invalid email or password."}), 401

    # Check account lockout
    lock_time = from_iso(row["locked_until"]) if row["locked_until"] else None
    if lock_time is not None:
        remaining = (lock_time - utcnow()).total_seconds()
        if remaining > 0:
            mins = math.ceil(remaining / 60)
            return jsonify({
                "error": f"Account temporarily locked. Try again in {mins} minute(s).",
            }), 429

    db = get_db()
    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        attempts = row["login_attempts"] + 1
        if attempts >= LOCKOUT_THRESHOLD:
            db.execute(
                "UPDATE users SET login_attempts = ?, locked_until = ? WHERE id = ?",
                (attempts, to_iso(utcnow() + timedelta(minutes=LOCKOUT_MINUTES)), row["id"]),
            )
        else:
            db.execute("UPDATE users SET login_attempts = ? WHERE id = ?", (attempts, row["id"]))
        db.commit()
        return jsonify({"error": "Invalid email or password."}), 401

    # Success: reset lockout fields
    db.execute("UPDATE users SET login_attempts = 0, locked_until = '' WHERE id = ?", (row["id"],))
    db.commit()

    user = User(row["id"], row["name"], row["email"], row["role"])
    login_user(user, remember=True)
    return jsonify({"success": True, "user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})
