"""Tests for content.py and the admin content API."""

from __future__ import annotations

import pytest


def _positions(db, table, ids):
    return [
        db.execute(f"SELECT position FROM {table} WHERE id = ?", (i,)).fetchone()[0]
        for i in ids
    ]


class TestModules:
    def test_create_appends(self, app, db):
        from content import create_module
        first = create_module("One")
        second = create_module("Two", "desc", published=True)
        assert (first["position"], second["position"]) == (1, 2)
        assert first["published"] is False
        assert second["published"] is True

    def test_title_required(self, app, db):
        from content import create_module
        with pytest.raises(ValueError):
            create_module("   ")

    def test_published_must_be_bool(self, app, db):
        from content import create_module
        with pytest.raises(ValueError):
            create_module("One", published="yes")

    def test_update_missing(self, app, db):
        from content import update_module
        with pytest.raises(LookupError):
            update_module(999, title="x")

    def test_delete_reindexes(self, app, db):
        from content import create_module, delete_module, list_modules
        ids = [create_module(t)["id"] for t in ("A", "B", "C")]
        delete_module(ids[0])
        assert [(m["id"], m["position"]) for m in list_modules()] == [(ids[1], 1), (ids[2], 2)]

    def test_delete_cascades_lessons(self, app, db, course):
        from content import delete_module
        delete_module(course["modules"][0])
        remaining = db.execute("SELECT COUNT(*) FROM lessons").fetchone()[0]
        assert remaining == 2

    def test_reorder(self, app, db, course):
        from content import reorder_modules
        m1, m2 = course["modules"]
        reorder_modules([m2, m1])
        assert _positions(db, "modules", [m1, m2]) == [2, 1]

    def test_reorder_must_list_all(self, app, db, course):
        from content import reorder_modules
        with pytest.raises(ValueError):
            reorder_modules([course["modules"][0]])
        with pytest.raises(ValueError):
            reorder_modules([course["modules"][0], course["modules"][0]])
        assert _positions(db, "modules", course["modules"]) == [1, 2]

    def test_list_published_only(self, app, db, course):
        from content import create_lesson, create_module, list_modules
        create_module("Draft")
        create_lesson(course["modules"][0], "Draft lesson")
        modules = list_modules(published_only=True)
        assert [m["id"] for m in modules] == course["modules"]
        assert modules[0]["lesson_count"] == 2
        assert len(list_modules()) == 3


class TestLessons:
    def test_create_requires_module(self, app, db):
        from content import create_lesson
        with pytest.raises(ValueError):
            create_lesson(999, "Orphan")

    def test_content_round_trips_as_dict(self, app, db, course):
        from content import create_lesson, get_lesson
        lesson = create_lesson(course["modules"][0], "Rich", content={"blocks": [{"type": "text"}]})
        assert get_lesson(lesson["id"])["content"] == {"blocks": [{"type": "text"}]}
        assert lesson["position"] == 3

    def test_reorder_rejects_foreign_ids(self, app, db, course):
        from content import reorder_lessons
        l1, l2, l3, _ = course["lessons"]
        with pytest.raises(ValueError, match="do not belong"):
            reorder_lessons(course["modules"][0], [l2, l1, l3])
        assert _positions(db, "lessons", [l1, l2]) == [1, 2]

    def test_reorder_lessons(self, app, db, course):
        from content import reorder_lessons
        l1, l2 = course["lessons"][:2]
        reorder_lessons(course["modules"][0], [l2, l1])
        assert _positions(db, "lessons", [l1, l2]) == [2, 1]

    def test_delete_reindexes(self, app, db, course):
        from content import create_lesson, delete_lesson
        l3 = create_lesson(course["modules"][0], "Third")["id"]
        delete_lesson(course["lessons"][0])
        assert _positions(db, "lessons", [course["lessons"][1], l3]) == [1, 2]

    def test_move_to_other_module(self, app, db, course):
        from content import move_lesson_to_module
        l1, l2, l3, l4 = course["lessons"]
        moved = move_lesson_to_module(l1, course["modules"][1])
        assert moved["module_id"] == course["modules"][1]
        assert moved["position"] == 3
        assert _positions(db, "lessons", [l2]) == [1]

    def test_move_to_missing_module(self, app, db, course):
        from content import move_lesson_to_module
        with pytest.raises(ValueError):
            move_lesson_to_module(course["lessons"][0], 999)

    def test_toggles(self, app, db, course):
        from content import toggle_lesson_free, toggle_lesson_published
        l2 = course["lessons"][1]
        assert toggle_lesson_free(l2)["is_free"] is True
        assert toggle_lesson_published(l2)["published"] is False

    def test_get_published_lesson_hides_drafts(self, app, db, course):
        from content import get_published_lesson, toggle_module_published
        assert get_published_lesson(course["lessons"][0]) is not None
        toggle_module_published(course["modules"][0])
        assert get_published_lesson(course["lessons"][0]) is None

    def test_adjacent_lessons_cross_modules(self, app, db, course):
        from content import adjacent_lessons
        nav = adjacent_lessons(course["lessons"][1])
        assert nav["previous"]["id"] == course["lessons"][0]
        assert nav["next"]["id"] == course["lessons"][2]
        assert adjacent_lessons(course["lessons"][0])["previous"] is None
        assert adjacent_lessons(course["lessons"][3])["next"] is None


class TestAdminContentAPI:
    def test_requires_admin(self, auth_client):
        resp = auth_client.get("/api/admin/modules")
        assert resp.status_code == 403

    def test_requires_login(self, client):
        resp = client.get("/api/admin/modules")
        assert resp.status_code == 401

    def test_create_module_and_lesson(self, admin_client):
        resp = admin_client.post("/api/admin/modules", json={"title": "Intro", "published": True})
        assert resp.status_code == 201
        module_id = resp.get_json()["module"]["id"]

        resp = admin_client.post(f"/api/admin/modules/{module_id}/lessons",
                                 json={"title": "Welcome", "is_free": True})
        assert resp.status_code == 201
        lesson = resp.get_json()["lesson"]
        assert lesson["is_free"] is True
        assert lesson["published"] is False

    def test_create_module_missing_title(self, admin_client):
        resp = admin_client.post("/api/admin/modules", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Title is required"

    def test_update_unknown_module(self, admin_client):
        resp = admin_client.patch("/api/admin/modules/999", json={"title": "X"})
        assert resp.status_code == 404

    def test_reorder_modules(self, admin_client, course):
        m1, m2 = course["modules"]
        resp = admin_client.post("/api/admin/modules/reorder", json={"module_ids": [m2, m1]})
        assert resp.status_code == 200
        assert [m["id"] for m in resp.get_json()["modules"]] == [m2, m1]

    def test_reorder_modules_bad_payload(self, admin_client, course):
        resp = admin_client.post("/api/admin/modules/reorder", json={"module_ids": "1,2"})
        assert resp.status_code == 400

    def test_reorder_lessons_foreign_id(self, admin_client, course):
        l1, l2, l3, _ = course["lessons"]
        resp = admin_client.post(f"/api/admin/modules/{course['modules'][0]}/lessons/reorder",
                                 json={"lesson_ids": [l1, l2, l3]})
        assert resp.status_code == 400

    def test_toggle_publish(self, admin_client, course):
        resp = admin_client.post(f"/api/admin/lessons/{course['lessons'][1]}/publish")
        assert resp.get_json()["lesson"]["published"] is False

    def test_move_lesson(self, admin_client, course):
        resp = admin_client.post(f"/api/admin/lessons/{course['lessons'][0]}/move",
                                 json={"module_id": course["modules"][1]})
        assert resp.status_code == 200
        assert resp.get_json()["lesson"]["module_id"] == course["modules"][1]

    def test_clear_video(self, admin_client, app, course):
        with app.app_context():
            from content import update_lesson_video
            update_lesson_video(course["lessons"][0], "asset", "play", 60)
        resp = admin_client.delete(f"/api/admin/lessons/{course['lessons'][0]}/video")
        assert resp.status_code == 200
        resp = admin_client.get(f"/api/admin/lessons/{course['lessons'][0]}")
        assert resp.get_json()["lesson"]["video_playback_id"] is None

    def test_delete_lesson(self, admin_client, course):
        resp = admin_client.delete(f"/api/admin/lessons/{course['lessons'][0]}")
        assert resp.status_code == 200
        assert admin_client.get(f"/api/admin/lessons/{course['lessons'][0]}").status_code == 404
