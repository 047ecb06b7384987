"""Learner-facing course routes: modules, lessons, completion, progress."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, jsonify
from flask_login import login_required

from access import AccessReason, check_lesson_access, check_user_access
from content import adjacent_lessons, get_module_with_lessons, get_published_lesson
from email_triggers import (
    run_safely,
    schedule_inactive_nudge,
    should_trigger_abandonment_on_complete,
    trigger_abandonment_sequence,
    trigger_module_complete_email,
)
from helpers import current_user_id
from progress import ProgressStoreDB
from tracking import EVENTS, track_event

logger = logging.getLogger(__name__)

bp = Blueprint("courses", __name__)


@bp.route("/api/modules")
@login_required
def api_modules() -> Any:
    store = ProgressStoreDB(current_user_id())
    return jsonify({
        "modules": store.modules_with_progress(),
        "course": store.course_progress().to_dict(),
    })


@bp.route("/api/modules/<int:module_id>")
@login_required
def api_module_detail(module_id: int) -> tuple[Any, int] | Any:
    module = get_module_with_lessons(module_id, published_only=True)
    if not module:
        return jsonify({"error": "Module not found"}), 404

    store = ProgressStoreDB(current_user_id())
    if not store.is_module_unlocked(module_id):
        return jsonify({
            "error": "Complete the previous module to unlock this one",
            "locked_by_module": store.locked_by_module(),
        }), 403

    completed = store.completed_lesson_ids()
    module["lessons"] = [
        {
            "id": l["id"],
            "title": l["title"],
            "position": l["position"],
            "is_free": l["is_free"],
            "video_duration": l["video_duration"],
            "completed": l["id"] in completed,
        }
        for l in module["lessons"]
    ]
    module["progress"] = store.module_progress(module_id).to_dict()
    return jsonify({"module": module})


@bp.route("/api/lessons/<int:lesson_id>")
@login_required
def api_lesson_detail(lesson_id: int) -> tuple[Any, int] | Any:
    uid = current_user_id()
    decision = check_lesson_access(uid, lesson_id)
    if decision.reason == AccessReason.NOT_FOUND:
        return jsonify({"error": "Lesson not found"}), 404

    access = decision.to_dict()
    access.pop("subscription", None)
    if not decision.has_access:
        return jsonify({"error": "Access denied", "access": access}), 403

    lesson = get_published_lesson(lesson_id)
    completed = lesson_id in ProgressStoreDB(uid).completed_lesson_ids()
    return jsonify({
        "lesson": {
            "id": lesson["id"],
            "title": lesson["title"],
            "content": lesson["content"],
            "module_id": lesson["module_id"],
            "module_title": lesson["module_title"],
            "is_free": lesson["is_free"],
            "video_playback_id": lesson["video_playback_id"],
            "video_duration": lesson["video_duration"],
            "completed": completed,
        },
        "navigation": adjacent_lessons(lesson_id),
        "access": access,
    })


@bp.route("/api/lessons/<int:lesson_id>/complete", methods=["POST"])
@login_required
def api_lesson_complete(lesson_id: int) -> tuple[Any, int] | Any:
    uid = current_user_id()
    lesson = get_published_lesson(lesson_id)
    if not lesson:
        return jsonify({"error": "Lesson not found"}), 404

    decision = check_lesson_access(uid, lesson_id)
    if not decision.has_access:
        return jsonify({"error": "Access denied", "reason": decision.reason}), 403

    store = ProgressStoreDB(uid)
    # Look-ahead must run before the write.
    module_done, module_id = store.would_complete_lesson_complete_module(lesson_id)
    course_done = module_done and store.would_complete_module_complete_course(module_id)

    store.mark_complete(lesson_id)

    track_event(uid, EVENTS.VIDEO_1_COMPLETED if lesson["is_free"] else EVENTS.LESSON_COMPLETED, {
        "lesson_id": lesson_id,
        "lesson_title": lesson["title"],
        "module_id": lesson["module_id"],
        "module_title": lesson["module_title"],
        "is_free": lesson["is_free"],
    })

    if should_trigger_abandonment_on_complete(lesson_id):
        run_safely(trigger_abandonment_sequence, uid)
    run_safely(schedule_inactive_nudge, uid)

    next_module_id = None
    if module_done:
        track_event(uid, EVENTS.MODULE_COMPLETED, {
            "module_id": module_id,
            "module_title": lesson["module_title"],
            "module_position": lesson["module_position"],
        })
        if course_done:
            track_event(uid, EVENTS.COURSE_COMPLETED, {})
        run_safely(trigger_module_complete_email, uid, module_id)

        unlocked = store.unlocked_module_ids()
        if module_id in unlocked and unlocked.index(module_id) + 1 < len(unlocked):
            next_module_id = unlocked[unlocked.index(module_id) + 1]

    return jsonify({
        "success": True,
        "lesson_completed": True,
        "module_completed": module_done,
        "course_completed": course_done,
        "module_id": module_id if module_done else None,
        "next_module_id": next_module_id,
    })


@bp.route("/api/lessons/<int:lesson_id>/complete", methods=["DELETE"])
@login_required
def api_lesson_incomplete(lesson_id: int) -> tuple[Any, int] | Any:
    if not get_published_lesson(lesson_id):
        return jsonify({"error": "Lesson not found"}), 404
    ProgressStoreDB(current_user_id()).mark_incomplete(lesson_id)
    return jsonify({"success": True, "lesson_completed": False})


@bp.route("/api/progress")
@login_required
def api_progress() -> Any:
    store = ProgressStoreDB(current_user_id())
    return jsonify({
        "course": store.course_progress().to_dict(),
        "unlocked_module_ids": store.unlocked_module_ids(),
        "next_lesson": store.next_incomplete_lesson(),
    })


@bp.route("/api/access")
@login_required
def api_access() -> Any:
    result = check_user_access(current_user_id())
    return jsonify(result.to_dict())
