"""Lesson progress and sequential module unlocking.

A user's module states (locked / unlocked / complete) are never stored.
They are recomputed from lesson_progress rows on every read, and only
published modules and lessons take part.

The first module is always unlocked. Each later module unlocks once the
module before it is complete; the unlocked set is therefore always a
prefix of the ordered module list.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict

from database import get_db, now_iso


@dataclass
class ModuleProgress:
    module_id: int
    completed: int
    total: int
    percentage: int
    is_complete: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CourseProgress:
    completed_modules: int
    total_modules: int
    completed_lessons: int
    total_lessons: int
    percentage: int
    is_complete: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(done / total * 100)


class ProgressStoreDB:
    """DB-backed progress for a single user."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    # ── Writes ────────────────────────────────────────────────

    def mark_complete(self, lesson_id: int) -> None:
        """Upsert a completed row. Safe to call repeatedly."""
        now = now_iso()
        db = get_db()
        db.execute(
            "INSERT INTO lesson_progress (user_id, lesson_id, completed, completed_at, "
            "created_at, updated_at) VALUES (?, ?, 1, ?, ?, ?) "
            "ON CONFLICT(user_id, lesson_id) DO UPDATE SET "
            "completed = 1, completed_at = excluded.completed_at, updated_at = excluded.updated_at",
            (self.user_id, lesson_id, now, now, now),
        )
        db.commit()

    def mark_incomplete(self, lesson_id: int) -> None:
        """Flip the row back to not-completed (rows are never deleted)."""
        now = now_iso()
        db = get_db()
        db.execute(
            "INSERT INTO lesson_progress (user_id, lesson_id, completed, completed_at, "
            "created_at, updated_at) VALUES (?, ?, 0, NULL, ?, ?) "
            "ON CONFLICT(user_id, lesson_id) DO UPDATE SET "
            "completed = 0, completed_at = NULL, updated_at = excluded.updated_at",
            (self.user_id, lesson_id, now, now),
        )
        db.commit()

    # ── Reads ─────────────────────────────────────────────────

    def _published_modules(self) -> list[int]:
        rows = get_db().execute(
            "SELECT id FROM modules WHERE published = 1 ORDER BY position"
        ).fetchall()
        return [r["id"] for r in rows]

    def _module_counts(self, module_id: int, exclude_lesson: int | None = None) -> tuple[int, int]:
        """(completed, total) over the published lessons of one module."""
        db = get_db()
        total = db.execute(
            "SELECT COUNT(*) AS n FROM lessons WHERE module_id = ? AND published = 1",
            (module_id,),
        ).fetchone()["n"]
        sql = (
            "SELECT COUNT(*) AS n FROM lesson_progress lp "
            "JOIN lessons l ON l.id = lp.lesson_id "
            "WHERE lp.user_id = ? AND lp.completed = 1 "
            "AND l.module_id = ? AND l.published = 1"
        )
        params: list = [self.user_id, module_id]
        if exclude_lesson is not None:
            sql += " AND l.id != ?"
            params.append(exclude_lesson)
        completed = db.execute(sql, params).fetchone()["n"]
        return completed, total

    def completed_lesson_ids(self) -> set[int]:
        rows = get_db().execute(
            "SELECT lesson_id FROM lesson_progress WHERE user_id = ? AND completed = 1",
            (self.user_id,),
        ).fetchall()
        return {r["lesson_id"] for r in rows}

    def module_progress(self, module_id: int) -> ModuleProgress:
        completed, total = self._module_counts(module_id)
        if total == 0:
            # An empty module never blocks the chain.
            return ModuleProgress(module_id, 0, 0, 100, True)
        return ModuleProgress(
            module_id=module_id,
            completed=completed,
            total=total,
            percentage=_percent(completed, total),
            is_complete=completed >= total,
        )

    def course_progress(self) -> CourseProgress:
        module_ids = self._published_modules()
        completed_modules = 0
        completed_lessons = 0
        total_lessons = 0
        for module_id in module_ids:
            mp = self.module_progress(module_id)
            completed_lessons += mp.completed
            total_lessons += mp.total
            if mp.is_complete:
                completed_modules += 1
        total_modules = len(module_ids)
        return CourseProgress(
            completed_modules=completed_modules,
            total_modules=total_modules,
            completed_lessons=completed_lessons,
            total_lessons=total_lessons,
            percentage=_percent(completed_lessons, total_lessons),
            is_complete=total_modules > 0 and completed_modules >= total_modules,
        )

    def unlocked_module_ids(self) -> list[int]:
        """Unlocked published modules in course order."""
        unlocked: list[int] = []
        for index, module_id in enumerate(self._published_modules()):
            if index > 0 and not self.module_progress(unlocked[-1]).is_complete:
                break
            unlocked.append(module_id)
        return unlocked

    def is_module_unlocked(self, module_id: int) -> bool:
        return module_id in self.unlocked_module_ids()

    def locked_by_module(self) -> int | None:
        """The unlocked-but-incomplete module that holds back the rest."""
        unlocked = self.unlocked_module_ids()
        if not unlocked:
            return None
        last = unlocked[-1]
        return None if self.module_progress(last).is_complete else last

    def is_lesson_accessible(self, lesson_id: int) -> bool:
        row = get_db().execute(
            "SELECT module_id, is_free FROM lessons WHERE id = ?", (lesson_id,),
        ).fetchone()
        if not row:
            return False
        if row["is_free"]:
            return True
        return self.is_module_unlocked(row["module_id"])

    # ── Look-ahead (call before mark_complete) ────────────────

    def would_complete_lesson_complete_module(self, lesson_id: int) -> tuple[bool, int | None]:
        """Would completing this lesson finish its module?

        Returns (would_complete, module_id); (False, None) when the lesson
        does not exist.
        """
        row = get_db().execute(
            "SELECT module_id FROM lessons WHERE id = ?", (lesson_id,),
        ).fetchone()
        if not row:
            return False, None
        module_id = row["module_id"]
        completed, total = self._module_counts(module_id, exclude_lesson=lesson_id)
        return completed + 1 >= total, module_id

    def would_complete_module_complete_course(self, module_id: int) -> bool:
        """Would finishing module_id leave every published module complete?"""
        module_ids = self._published_modules()
        if not module_ids:
            return False
        done = 0
        for mid in module_ids:
            if mid == module_id or self.module_progress(mid).is_complete:
                done += 1
        return done >= len(module_ids)

    # ── Dashboard helpers ─────────────────────────────────────

    def modules_with_progress(self) -> list[dict]:
        db = get_db()
        completed_ids = self.completed_lesson_ids()
        unlocked = set(self.unlocked_module_ids())
        result = []
        for module in db.execute(
            "SELECT id, title, description, position FROM modules "
            "WHERE published = 1 ORDER BY position"
        ).fetchall():
            lessons = [
                {
                    "id": l["id"],
                    "title": l["title"],
                    "position": l["position"],
                    "is_free": bool(l["is_free"]),
                    "video_duration": l["video_duration"],
                    "completed": l["id"] in completed_ids,
                }
                for l in db.execute(
                    "SELECT id, title, position, is_free, video_duration FROM lessons "
                    "WHERE module_id = ? AND published = 1 ORDER BY position",
                    (module["id"],),
                ).fetchall()
            ]
            result.append({
                **dict(module),
                "lessons": lessons,
                "progress": self.module_progress(module["id"]).to_dict(),
                "is_unlocked": module["id"] in unlocked,
            })
        return result

    def next_incomplete_lesson(self) -> dict | None:
        """First published lesson, in course order, not yet completed."""
        row = get_db().execute(
            "SELECT l.id, l.title, l.module_id, m.title AS module_title "
            "FROM lessons l JOIN modules m ON m.id = l.module_id "
            "LEFT JOIN lesson_progress lp ON lp.lesson_id = l.id AND lp.user_id = ? "
            "WHERE l.published = 1 AND m.published = 1 "
            "AND (lp.completed IS NULL OR lp.completed = 0) "
            "ORDER BY m.position, l.position LIMIT 1",
            (self.user_id,),
        ).fetchone()
        return dict(row) if row else None

    def last_completed_lesson(self) -> dict | None:
        row = get_db().execute(
            "SELECT l.id, l.title, l.module_id FROM lesson_progress lp "
            "JOIN lessons l ON l.id = lp.lesson_id "
            "WHERE lp.user_id = ? AND lp.completed = 1 "
            "ORDER BY lp.completed_at DESC, lp.id DESC LIMIT 1",
            (self.user_id,),
        ).fetchone()
        return dict(row) if row else None
