"""Admin routes: access overrides and course content authoring."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, jsonify, request

import content
from access import check_user_access, toggle_access_override
from database import get_db
from email_queue import pending_for_user
from helpers import admin_required, current_user_id, id_list, json_body
from subscription_store import SubscriptionStoreDB

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@bp.errorhandler(ValueError)
def _bad_request(e: ValueError):
    return jsonify({"error": str(e)}), 400


@bp.errorhandler(LookupError)
def _not_found(e: LookupError):
    return jsonify({"error": str(e)}), 404


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@bp.route("/users")
@admin_required
def api_users() -> Any:
    search = (request.args.get("q") or "").strip().lower()
    sql = (
        "SELECT u.id, u.name, u.email, u.role, u.access_override, u.created_at, "
        "s.status AS subscription_status, s.plan "
        "FROM users u LEFT JOIN subscriptions s ON s.user_id = u.id"
    )
    params: list = []
    if search:
        sql += " WHERE lower(u.email) LIKE ? OR lower(u.name) LIKE ?"
        params = [f"%{search}%", f"%{search}%"]
    rows = get_db().execute(sql + " ORDER BY u.id DESC LIMIT 200", params).fetchall()
    return jsonify({"users": [
        {**dict(r), "access_override": bool(r["access_override"])} for r in rows
    ]})


@bp.route("/users/<int:user_id>")
@admin_required
def api_user_detail(user_id: int) -> tuple[Any, int] | Any:
    row = get_db().execute(
        "SELECT id, name, email, role, access_override, marketing_opt_out, created_at "
        "FROM users WHERE id = ?", (user_id,),
    ).fetchone()
    if not row:
        return jsonify({"error": "User not found"}), 404
    access = check_user_access(user_id).to_dict()
    access.pop("subscription", None)
    return jsonify({
        "user": {
            **dict(row),
            "access_override": bool(row["access_override"]),
            "marketing_opt_out": bool(row["marketing_opt_out"]),
        },
        "subscription": SubscriptionStoreDB(user_id).get(),
        "access": access,
        "queued_emails": pending_for_user(user_id),
    })


@bp.route("/users/<int:user_id>/override", methods=["POST"])
@admin_required
def api_user_override(user_id: int) -> Any:
    data = json_body()
    override = data.get("override")
    if not isinstance(override, bool):
        return jsonify({"error": "override must be a boolean"}), 400
    toggle_access_override(user_id, current_user_id(), override)
    return jsonify({"success": True, "access_override": override})


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------

@bp.route("/modules")
@admin_required
def api_modules() -> Any:
    return jsonify({"modules": content.list_modules()})


@bp.route("/modules", methods=["POST"])
@admin_required
def api_module_create() -> tuple[Any, int]:
    data = json_body()
    module = content.create_module(
        data.get("title"),
        description=data.get("description") or "",
        published=data.get("published", False),
    )
    return jsonify({"module": module}), 201


@bp.route("/modules/reorder", methods=["POST"])
@admin_required
def api_modules_reorder() -> Any:
    content.reorder_modules(id_list(json_body().get("module_ids")))
    return jsonify({"success": True, "modules": content.list_modules()})


@bp.route("/modules/<int:module_id>")
@admin_required
def api_module_detail(module_id: int) -> tuple[Any, int] | Any:
    module = content.get_module_with_lessons(module_id)
    if not module:
        return jsonify({"error": "Module not found"}), 404
    return jsonify({"module": module})


@bp.route("/modules/<int:module_id>", methods=["PATCH"])
@admin_required
def api_module_update(module_id: int) -> Any:
    data = json_body()
    module = content.update_module(
        module_id,
        title=data.get("title"),
        description=data.get("description"),
        published=data.get("published"),
    )
    return jsonify({"module": module})


@bp.route("/modules/<int:module_id>/publish", methods=["POST"])
@admin_required
def api_module_toggle_publish(module_id: int) -> Any:
    return jsonify({"module": content.toggle_module_published(module_id)})


@bp.route("/modules/<int:module_id>", methods=["DELETE"])
@admin_required
def api_module_delete(module_id: int) -> Any:
    content.delete_module(module_id)
    return jsonify({"success": True})


@bp.route("/modules/<int:module_id>/lessons", methods=["POST"])
@admin_required
def api_lesson_create(module_id: int) -> tuple[Any, int]:
    data = json_body()
    lesson = content.create_lesson(
        module_id,
        data.get("title"),
        content=data.get("content"),
        is_free=data.get("is_free", False),
        published=data.get("published", False),
    )
    return jsonify({"lesson": lesson}), 201


@bp.route("/modules/<int:module_id>/lessons/reorder", methods=["POST"])
@admin_required
def api_lessons_reorder(module_id: int) -> Any:
    content.reorder_lessons(module_id, id_list(json_body().get("lesson_ids")))
    return jsonify({"success": True, "module": content.get_module_with_lessons(module_id)})


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------

@bp.route("/lessons/<int:lesson_id>")
@admin_required
def api_lesson_detail(lesson_id: int) -> tuple[Any, int] | Any:
    lesson = content.get_lesson(lesson_id)
    if not lesson:
        return jsonify({"error": "Lesson not found"}), 404
    return jsonify({"lesson": lesson})


@bp.route("/lessons/<int:lesson_id>", methods=["PATCH"])
@admin_required
def api_lesson_update(lesson_id: int) -> Any:
    data = json_body()
    lesson = content.update_lesson(
        lesson_id,
        title=data.get("title"),
        content=data.get("content"),
        published=data.get("published"),
        is_free=data.get("is_free"),
    )
    return jsonify({"lesson": lesson})


@bp.route("/lessons/<int:lesson_id>/publish", methods=["POST"])
@admin_required
def api_lesson_toggle_publish(lesson_id: int) -> Any:
    return jsonify({"lesson": content.toggle_lesson_published(lesson_id)})


@bp.route("/lessons/<int:lesson_id>/free", methods=["POST"])
@admin_required
def api_lesson_toggle_free(lesson_id: int) -> Any:
    return jsonify({"lesson": content.toggle_lesson_free(lesson_id)})


@bp.route("/lessons/<int:lesson_id>/move", methods=["POST"])
@admin_required
def api_lesson_move(lesson_id: int) -> Any:
    module_id = json_body().get("module_id")
    if not isinstance(module_id, int) or isinstance(module_id, bool):
        return jsonify({"error": "module_id must be an integer"}), 400
    return jsonify({"lesson": content.move_lesson_to_module(lesson_id, module_id)})


@bp.route("/lessons/<int:lesson_id>/video", methods=["DELETE"])
@admin_required
def api_lesson_clear_video(lesson_id: int) -> tuple[Any, int] | Any:
    if not content.update_lesson_video(lesson_id, None, None, None):
        return jsonify({"error": "Lesson not found"}), 404
    return jsonify({"success": True})


@bp.route("/lessons/<int:lesson_id>", methods=["DELETE"])
@admin_required
def api_lesson_delete(lesson_id: int) -> Any:
    content.delete_lesson(lesson_id)
    return jsonify({"success": True})
