"""
Mux video webhook ingestion.

Mux tells us when an uploaded lesson video has been turned into an asset
and when it is ready to play. The lesson is identified by the JSON
``passthrough`` string set at upload time: ``{"lesson_id": 12}``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

from content import update_lesson_video
from database import get_db, now_iso

logger = logging.getLogger(__name__)


def verify_mux_signature(payload: bytes, header: str, secret: str) -> bool:
    """Check a ``Mux-Signature: t=<ts>,v1=<hex>`` header."""
    if not header or not secret:
        return False
    parts = dict(
        p.split("=", 1) for p in header.split(",") if "=" in p
    )
    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature:
        return False

    signed = timestamp.encode() + b"." + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.encode(), expected.encode())


def _lesson_id(passthrough: Any) -> int | None:
    if not passthrough:
        return None
    try:
        meta = json.loads(passthrough)
    except (TypeError, ValueError):
        logger.error("Failed to parse Mux passthrough: %r", passthrough)
        return None
    if not isinstance(meta, dict):
        return None
    # Uploads created by older admin builds used camelCase
    lesson_id = meta.get("lesson_id", meta.get("lessonId"))
    try:
        return int(lesson_id) if lesson_id is not None else None
    except (TypeError, ValueError):
        return None


def handle_mux_event(event: dict) -> dict:
    """Apply one Mux webhook event. Returns a dict describing the action."""
    event_type = event.get("type", "")
    data = event.get("data") or {}
    lesson_id = _lesson_id(data.get("passthrough"))

    if event_type == "video.asset.ready":
        if lesson_id is None:
            logger.info("Mux asset ready without a lesson passthrough, skipping")
            return {"action": "skipped", "reason": "no lesson"}
        playback_id = next(
            (p.get("id") for p in data.get("playback_ids") or [] if p.get("policy") == "signed"),
            None,
        )
        if not playback_id:
            logger.error("No signed playback ID for Mux asset %s", data.get("id"))
            return {"action": "skipped", "reason": "no signed playback id"}
        duration = round(data.get("duration") or 0)
        if not update_lesson_video(lesson_id, data.get("id"), playback_id, duration):
            logger.warning("Mux asset ready for unknown lesson %s", lesson_id)
            return {"action": "skipped", "reason": "unknown lesson"}
        logger.info("Lesson %s video ready: asset=%s", lesson_id, data.get("id"))
        return {"action": "video_ready", "lesson_id": lesson_id}

    if event_type == "video.asset.errored":
        logger.error("Mux asset errored: %s", data.get("errors"))
        if lesson_id is None:
            return {"action": "skipped", "reason": "no lesson"}
        update_lesson_video(lesson_id, None, None, None)
        return {"action": "video_cleared", "lesson_id": lesson_id}

    if event_type == "video.upload.asset_created":
        asset_id = data.get("asset_id")
        if lesson_id is None or not asset_id:
            return {"action": "skipped", "reason": "no lesson or asset"}
        # Playback stays empty until asset.ready arrives.
        db = get_db()
        db.execute(
            "UPDATE lessons SET video_asset_id = ?, video_playback_id = NULL, updated_at = ? "
            "WHERE id = ?",
            (asset_id, now_iso(), lesson_id),
        )
        db.commit()
        logger.info("Lesson %s video processing: asset=%s", lesson_id, asset_id)
        return {"action": "video_processing", "lesson_id": lesson_id}

    logger.info("Unhandled Mux webhook type: %s", event_type)
    return {"action": "ignored", "event_type": event_type}
