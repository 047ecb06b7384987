"""Course content store — modules and lessons.

Authoring operations used by the admin API. Positions are 1-based and
dense within their collection; every reorder is applied as a full reindex
inside one transaction so a partial write can never leave gaps or
duplicates behind.

Validation problems raise ValueError before anything is written.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from database import get_db, now_iso, transaction

logger = logging.getLogger(__name__)


def _require_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValueError("Title is required")
    return title.strip()


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean")
    return value


def _lesson_dict(row) -> dict:
    lesson = dict(row)
    lesson["published"] = bool(lesson["published"])
    lesson["is_free"] = bool(lesson["is_free"])
    if "content" in lesson:
        lesson["content"] = json.loads(lesson["content"] or "{}")
    return lesson


def _module_dict(row) -> dict:
    module = dict(row)
    module["published"] = bool(module["published"])
    return module


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------

def create_module(title: str, description: str = "", published: bool = False) -> dict:
    """Create a module at the end of the course."""
    title = _require_title(title)
    published = _require_bool("published", published)
    now = now_iso()
    with transaction() as db:
        row = db.execute("SELECT COALESCE(MAX(position), 0) AS max_pos FROM modules").fetchone()
        cur = db.execute(
            "INSERT INTO modules (title, description, position, published, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (title, (description or "").strip(), row["max_pos"] + 1, int(published), now, now),
        )
        module_id = cur.lastrowid
    logger.info("Module created: id=%s title=%s", module_id, title)
    return get_module(module_id)


def get_module(module_id: int) -> dict | None:
    row = get_db().execute("SELECT * FROM modules WHERE id = ?", (module_id,)).fetchone()
    return _module_dict(row) if row else None


def get_module_with_lessons(module_id: int, published_only: bool = False) -> dict | None:
    module = get_module(module_id)
    if not module or (published_only and not module["published"]):
        return None
    sql = "SELECT * FROM lessons WHERE module_id = ?"
    if published_only:
        sql += " AND published = 1"
    rows = get_db().execute(sql + " ORDER BY position", (module_id,)).fetchall()
    module["lessons"] = [_lesson_dict(r) for r in rows]
    return module


def list_modules(published_only: bool = False) -> list[dict]:
    """All modules in order, with their lesson counts."""
    lesson_filter = "AND l.published = 1" if published_only else ""
    where = "WHERE m.published = 1" if published_only else ""
    rows = get_db().execute(
        f"SELECT m.*, COUNT(l.id) AS lesson_count FROM modules m "
        f"LEFT JOIN lessons l ON l.module_id = m.id {lesson_filter} "
        f"{where} GROUP BY m.id ORDER BY m.position"
    ).fetchall()
    return [_module_dict(r) for r in rows]


def update_module(module_id: int, title: str | None = None,
                  description: str | None = None, published: bool | None = None) -> dict:
    fields: dict[str, Any] = {}
    if title is not None:
        fields["title"] = _require_title(title)
    if description is not None:
        fields["description"] = description.strip()
    if published is not None:
        fields["published"] = int(_require_bool("published", published))
    if get_module(module_id) is None:
        raise LookupError("Module not found")
    if fields:
        fields["updated_at"] = now_iso()
        assignments = ", ".join(f"{k} = ?" for k in fields)
        db = get_db()
        db.execute(
            f"UPDATE modules SET {assignments} WHERE id = ?",
            (*fields.values(), module_id),
        )
        db.commit()
    return get_module(module_id)


def toggle_module_published(module_id: int) -> dict:
    module = get_module(module_id)
    if module is None:
        raise LookupError("Module not found")
    return update_module(module_id, published=not module["published"])


def delete_module(module_id: int) -> None:
    """Delete a module (lessons cascade) and close the gap in positions."""
    if get_module(module_id) is None:
        raise LookupError("Module not found")
    with transaction() as db:
        db.execute("DELETE FROM modules WHERE id = ?", (module_id,))
        remaining = [r["id"] for r in db.execute("SELECT id FROM modules ORDER BY position")]
        for index, mid in enumerate(remaining, start=1):
            db.execute("UPDATE modules SET position = ? WHERE id = ?", (index, mid))
    logger.info("Module deleted: id=%s", module_id)


def reorder_modules(ordered_ids: list[int]) -> None:
    """Reindex every module to match ordered_ids (1-based)."""
    if not ordered_ids:
        raise ValueError("No module IDs provided")
    existing = {r["id"] for r in get_db().execute("SELECT id FROM modules")}
    if len(set(ordered_ids)) != len(ordered_ids) or set(ordered_ids) != existing:
        raise ValueError("Module IDs must list every module exactly once")

    now = now_iso()
    with transaction() as db:
        for index, module_id in enumerate(ordered_ids, start=1):
            db.execute(
                "UPDATE modules SET position = ?, updated_at = ? WHERE id = ?",
                (index, now, module_id),
            )
    logger.info("Modules reordered: %s", ordered_ids)


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------

def create_lesson(module_id: int, title: str, content: dict | None = None,
                  is_free: bool = False, published: bool = False) -> dict:
    """Create a lesson at the end of its module."""
    title = _require_title(title)
    is_free = _require_bool("is_free", is_free)
    published = _require_bool("published", published)
    if get_module(module_id) is None:
        raise ValueError("Module does not exist")
    now = now_iso()
    with transaction() as db:
        row = db.execute(
            "SELECT COALESCE(MAX(position), 0) AS max_pos FROM lessons WHERE module_id = ?",
            (module_id,),
        ).fetchone()
        cur = db.execute(
            "INSERT INTO lessons (module_id, title, content, position, published, is_free, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (module_id, title, json.dumps(content or {}), row["max_pos"] + 1,
             int(published), int(is_free), now, now),
        )
        lesson_id = cur.lastrowid
    return get_lesson(lesson_id)


def get_lesson(lesson_id: int) -> dict | None:
    row = get_db().execute(
        "SELECT l.*, m.title AS module_title, m.position AS module_position, "
        "m.published AS module_published "
        "FROM lessons l JOIN modules m ON m.id = l.module_id WHERE l.id = ?",
        (lesson_id,),
    ).fetchone()
    if not row:
        return None
    lesson = _lesson_dict(row)
    lesson["module_published"] = bool(lesson["module_published"])
    return lesson


def get_published_lesson(lesson_id: int) -> dict | None:
    """Lesson visible to learners: lesson and its module both published."""
    lesson = get_lesson(lesson_id)
    if not lesson or not lesson["published"] or not lesson["module_published"]:
        return None
    return lesson


def update_lesson(lesson_id: int, title: str | None = None, content: dict | None = None,
                  published: bool | None = None, is_free: bool | None = None) -> dict:
    fields: dict[str, Any] = {}
    if title is not None:
        fields["title"] = _require_title(title)
    if content is not None:
        fields["content"] = json.dumps(content)
    if published is not None:
        fields["published"] = int(_require_bool("published", published))
    if is_free is not None:
        fields["is_free"] = int(_require_bool("is_free", is_free))
    if get_lesson(lesson_id) is None:
        raise LookupError("Lesson not found")
    if fields:
        fields["updated_at"] = now_iso()
        assignments = ", ".join(f"{k} = ?" for k in fields)
        db = get_db()
        db.execute(
            f"UPDATE lessons SET {assignments} WHERE id = ?",
            (*fields.values(), lesson_id),
        )
        db.commit()
    return get_lesson(lesson_id)


def toggle_lesson_published(lesson_id: int) -> dict:
    lesson = get_lesson(lesson_id)
    if lesson is None:
        raise LookupError("Lesson not found")
    return update_lesson(lesson_id, published=not lesson["published"])


def toggle_lesson_free(lesson_id: int) -> dict:
    lesson = get_lesson(lesson_id)
    if lesson is None:
        raise LookupError("Lesson not found")
    return update_lesson(lesson_id, is_free=not lesson["is_free"])


def _reindex_lessons(db, module_id: int) -> None:
    rows = db.execute(
        "SELECT id FROM lessons WHERE module_id = ? ORDER BY position, id", (module_id,),
    ).fetchall()
    for index, row in enumerate(rows, start=1):
        db.execute("UPDATE lessons SET position = ? WHERE id = ?", (index, row["id"]))


def delete_lesson(lesson_id: int) -> None:
    lesson = get_lesson(lesson_id)
    if lesson is None:
        raise LookupError("Lesson not found")
    with transaction() as db:
        db.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
        _reindex_lessons(db, lesson["module_id"])


def reorder_lessons(module_id: int, ordered_ids: list[int]) -> None:
    """Reindex the lessons of one module; every ID must belong to it."""
    if not ordered_ids:
        raise ValueError("No lesson IDs provided")
    existing = {
        r["id"] for r in get_db().execute(
            "SELECT id FROM lessons WHERE module_id = ?", (module_id,),
        )
    }
    if not set(ordered_ids) <= existing:
        raise ValueError("Some lesson IDs do not belong to this module")
    if len(set(ordered_ids)) != len(ordered_ids) or set(ordered_ids) != existing:
        raise ValueError("Lesson IDs must list every lesson in the module exactly once")

    now = now_iso()
    with transaction() as db:
        for index, lesson_id in enumerate(ordered_ids, start=1):
            db.execute(
                "UPDATE lessons SET position = ?, updated_at = ? WHERE id = ?",
                (index, now, lesson_id),
            )


def move_lesson_to_module(lesson_id: int, new_module_id: int) -> dict:
    """Move a lesson to the end of another module, closing the old gap."""
    lesson = get_lesson(lesson_id)
    if lesson is None:
        raise LookupError("Lesson not found")
    if get_module(new_module_id) is None:
        raise ValueError("Target module does not exist")
    old_module_id = lesson["module_id"]
    if old_module_id == new_module_id:
        return lesson

    with transaction() as db:
        row = db.execute(
            "SELECT COALESCE(MAX(position), 0) AS max_pos FROM lessons WHERE module_id = ?",
            (new_module_id,),
        ).fetchone()
        db.execute(
            "UPDATE lessons SET module_id = ?, position = ?, updated_at = ? WHERE id = ?",
            (new_module_id, row["max_pos"] + 1, now_iso(), lesson_id),
        )
        _reindex_lessons(db, old_module_id)
    return get_lesson(lesson_id)


def update_lesson_video(lesson_id: int, asset_id: str | None,
                        playback_id: str | None, duration: int | None) -> bool:
    """Store the hosted-video reference on a lesson. Returns False if missing."""
    db = get_db()
    cur = db.execute(
        "UPDATE lessons SET video_asset_id = ?, video_playback_id = ?, video_duration = ?, "
        "updated_at = ? WHERE id = ?",
        (asset_id, playback_id, duration, now_iso(), lesson_id),
    )
    db.commit()
    return cur.rowcount > 0


def adjacent_lessons(lesson_id: int) -> dict[str, dict | None]:
    """Previous and next published lessons across the whole course."""
    rows = get_db().execute(
        "SELECT l.id, l.title, l.module_id FROM lessons l "
        "JOIN modules m ON m.id = l.module_id "
        "WHERE l.published = 1 AND m.published = 1 "
        "ORDER BY m.position, l.position"
    ).fetchall()
    ids = [r["id"] for r in rows]
    if lesson_id not in ids:
        return {"previous": None, "next": None}
    idx = ids.index(lesson_id)
    return {
        "previous": dict(rows[idx - 1]) if idx > 0 else None,
        "next": dict(rows[idx + 1]) if idx + 1 < len(rows) else None,
    }
