"""Tests for progress.py — completion, module/course progress, unlock chain."""

from __future__ import annotations


class TestCompletion:
    def test_mark_complete_is_idempotent(self, app, course):
        with app.app_context():
            from database import get_db
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            lesson = course["lessons"][0]
            store.mark_complete(lesson)
            store.mark_complete(lesson)
            rows = get_db().execute(
                "SELECT completed FROM lesson_progress WHERE user_id = 1 AND lesson_id = ?",
                (lesson,),
            ).fetchall()
            assert len(rows) == 1
            assert rows[0]["completed"] == 1

    def test_mark_incomplete_keeps_row(self, app, course):
        with app.app_context():
            from database import get_db
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            lesson = course["lessons"][0]
            store.mark_complete(lesson)
            store.mark_incomplete(lesson)
            row = get_db().execute(
                "SELECT completed, completed_at FROM lesson_progress "
                "WHERE user_id = 1 AND lesson_id = ?", (lesson,),
            ).fetchone()
            assert row["completed"] == 0
            assert row["completed_at"] is None

    def test_complete_undo_complete_converges(self, app, course):
        with app.app_context():
            from database import get_db
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            lesson = course["lessons"][0]
            store.mark_complete(lesson)
            store.mark_incomplete(lesson)
            store.mark_complete(lesson)
            rows = get_db().execute(
                "SELECT completed, completed_at FROM lesson_progress WHERE user_id = 1",
            ).fetchall()
            assert len(rows) == 1
            assert rows[0]["completed"] == 1
            assert rows[0]["completed_at"] is not None

    def test_mark_incomplete_without_prior_row(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_incomplete(course["lessons"][1])
            assert store.completed_lesson_ids() == set()


class TestModuleProgress:
    def test_partial_module(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            mp = store.module_progress(course["modules"][0])
            assert (mp.completed, mp.total, mp.percentage, mp.is_complete) == (1, 2, 50, False)

    def test_empty_module_counts_as_complete(self, app):
        with app.app_context():
            from content import create_module
            from progress import ProgressStoreDB
            module = create_module("Empty", published=True)
            mp = ProgressStoreDB(1).module_progress(module["id"])
            assert mp.is_complete is True
            assert mp.percentage == 100
            assert mp.total == 0

    def test_unpublished_lessons_ignored(self, app, course):
        with app.app_context():
            from content import create_lesson
            from progress import ProgressStoreDB
            create_lesson(course["modules"][0], "Draft lesson", published=False)
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            store.mark_complete(course["lessons"][1])
            assert store.module_progress(course["modules"][0]).is_complete is True


class TestCourseProgress:
    def test_no_modules(self, app):
        with app.app_context():
            from progress import ProgressStoreDB
            cp = ProgressStoreDB(1).course_progress()
            assert cp.total_modules == 0
            assert cp.percentage == 0
            assert cp.is_complete is False

    def test_first_lesson_only(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            assert store.course_progress().to_dict() == {
                "completed_modules": 0,
                "total_modules": 2,
                "completed_lessons": 1,
                "total_lessons": 4,
                "percentage": 25,
                "is_complete": False,
            }
            assert store.is_module_unlocked(course["modules"][1]) is False

    def test_percentage_rounds(self, app, course):
        with app.app_context():
            from content import create_lesson
            from progress import ProgressStoreDB
            # 5 lessons total, 1 complete -> 20%
            create_lesson(course["modules"][1], "Fifth", published=True)
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            cp = store.course_progress()
            assert cp.completed_lessons == 1
            assert cp.total_lessons == 5
            assert cp.percentage == 20

    def test_full_course_complete(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            for lesson in course["lessons"]:
                store.mark_complete(lesson)
            cp = store.course_progress()
            assert cp.completed_modules == 2
            assert cp.is_complete is True
            assert cp.percentage == 100


class TestUnlockChain:
    def test_first_module_always_unlocked(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            assert ProgressStoreDB(1).unlocked_module_ids() == [course["modules"][0]]

    def test_completing_module_unlocks_next(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            store.mark_complete(course["lessons"][1])
            assert store.unlocked_module_ids() == course["modules"]
            assert store.is_module_unlocked(course["modules"][1]) is True

    def test_unlocked_set_is_prefix(self, app, course):
        """Completing a later module without the earlier one unlocks nothing extra."""
        with app.app_context():
            from content import create_module, create_lesson
            from progress import ProgressStoreDB
            m3 = create_module("Third", published=True)
            create_lesson(m3["id"], "Only lesson", published=True)
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][2])
            store.mark_complete(course["lessons"][3])
            assert store.unlocked_module_ids() == [course["modules"][0]]
            assert store.is_module_unlocked(m3["id"]) is False

    def test_undo_relocks_downstream(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            store.mark_complete(course["lessons"][1])
            store.mark_incomplete(course["lessons"][1])
            assert store.is_module_unlocked(course["modules"][1]) is False

    def test_empty_module_does_not_block(self, app, course):
        with app.app_context():
            from content import create_module, create_lesson, reorder_modules
            from progress import ProgressStoreDB
            empty = create_module("Interlude", published=True)
            reorder_modules([course["modules"][0], empty["id"], course["modules"][1]])
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            store.mark_complete(course["lessons"][1])
            assert store.unlocked_module_ids() == [
                course["modules"][0], empty["id"], course["modules"][1],
            ]

    def test_unpublished_module_is_never_unlocked(self, app, course):
        with app.app_context():
            from content import create_module
            from progress import ProgressStoreDB
            draft = create_module("Draft", published=False)
            assert ProgressStoreDB(1).is_module_unlocked(draft["id"]) is False

    def test_locked_by_module(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            assert store.locked_by_module() == course["modules"][0]
            for lesson in course["lessons"]:
                store.mark_complete(lesson)
            assert store.locked_by_module() is None


class TestLessonAccessibility:
    def test_missing_lesson(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            assert ProgressStoreDB(1).is_lesson_accessible(99999) is False

    def test_free_lesson_accessible(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            assert ProgressStoreDB(1).is_lesson_accessible(course["lessons"][0]) is True

    def test_locked_module_lesson(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            assert ProgressStoreDB(1).is_lesson_accessible(course["lessons"][2]) is False


class TestLookAhead:
    def test_last_lesson_would_complete_module(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            assert store.would_complete_lesson_complete_module(course["lessons"][1]) == (
                True, course["modules"][0],
            )

    def test_first_lesson_would_not_complete_module(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            result = ProgressStoreDB(1).would_complete_lesson_complete_module(course["lessons"][0])
            assert result == (False, course["modules"][0])

    def test_already_completed_lesson_is_not_double_counted(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            done, _ = store.would_complete_lesson_complete_module(course["lessons"][0])
            assert done is False

    def test_missing_lesson(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            assert ProgressStoreDB(1).would_complete_lesson_complete_module(99999) == (False, None)

    def test_module_would_complete_course(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            store.mark_complete(course["lessons"][1])
            assert store.would_complete_module_complete_course(course["modules"][1]) is True
            assert store.would_complete_module_complete_course(course["modules"][0]) is False

    def test_no_modules_never_completes_course(self, app):
        with app.app_context():
            from progress import ProgressStoreDB
            assert ProgressStoreDB(1).would_complete_module_complete_course(1) is False


class TestDashboardHelpers:
    def test_modules_with_progress(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            store.mark_complete(course["lessons"][0])
            modules = store.modules_with_progress()
            assert [m["id"] for m in modules] == course["modules"]
            assert modules[0]["is_unlocked"] is True
            assert modules[1]["is_unlocked"] is False
            assert modules[0]["lessons"][0]["completed"] is True
            assert modules[0]["progress"]["percentage"] == 50

    def test_next_incomplete_lesson(self, app, course):
        with app.app_context():
            from progress import ProgressStoreDB
            store = ProgressStoreDB(1)
            assert store.next_incomplete_lesson()["id"] == course["lessons"][0]
            store.mark_complete(course["lessons"][0])
            assert store.next_incomplete_lesson()["id"] == course["lessons"][1]
            for lesson in course["lessons"]:
                store.mark_complete(lesson)
            assert store.next_incomplete_lesson() is None
