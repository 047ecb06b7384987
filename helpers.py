"""
Shared helpers used across blueprints.

Kept apart from app.py to break circular dependencies.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import jsonify, request
from flask_login import current_user


def current_user_id() -> int | None:
    """Return the current authenticated user's ID, or None."""
    if current_user.is_authenticated:
        return current_user.id
    return None


def admin_required(f: Callable) -> Callable:
    """Decorator that requires the ADMIN role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required"}), 401
        if getattr(current_user, "role", "USER") != "ADMIN":
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated


def json_body() -> dict:
    """Request JSON as a dict; anything else becomes {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def id_list(value: Any) -> list[int]:
    """Validate a JSON list of integer IDs."""
    if not isinstance(value, list) or not all(
        isinstance(v, int) and not isinstance(v, bool) for v in value
    ):
        raise ValueError("Expected a list of integer IDs")
    return value
