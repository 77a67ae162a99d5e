"""Tests for the class registry."""

from __future__ import annotations

import pytest

import class_service
from class_service import ClassService
from errors import Conflict, Forbidden, NotFound, ValidationError


class TestCreateClass:
    def test_six_digit_code(self, db, teacher):
        cls = ClassService.from_db(db).create_class("Python 101", teacher["id"])
        assert len(cls["code"]) == 6
        assert cls["code"].isdigit()
        assert cls["teacher_id"] == teacher["id"]

    def test_name_required(self, db, teacher):
        with pytest.raises(ValidationError):
            ClassService.from_db(db).create_class("  ", teacher["id"])

    def test_retries_past_collisions(self, db, teacher, monkeypatch):
        svc = ClassService.from_db(db)
        first = svc.create_class("A", teacher["id"])
        codes = iter([first["code"], first["code"], "123456"])
        monkeypatch.setattr(class_service, "generate_join_code", lambda: next(codes))
        assert svc.create_class("B", teacher["id"])["code"] == "123456"

    def test_gives_up_after_bounded_attempts(self, db, teacher, monkeypatch):
        svc = ClassService.from_db(db)
        first = svc.create_class("A", teacher["id"])
        calls = []

        def same_code():
            calls.append(1)
            return first["code"]

        monkeypatch.setattr(class_service, "generate_join_code", same_code)
        with pytest.raises(Conflict):
            svc.create_class("B", teacher["id"])
        assert len(calls) == class_service.CODE_ATTEMPTS

    def test_route(self, teacher_client):
        resp = teacher_client.post("/api/classes", json={"name": "Data 201"})
        assert resp.status_code == 201
        listed = teacher_client.get("/api/classes").get_json()["classes"]
        assert listed[0]["name"] == "Data 201"
        assert listed[0]["student_count"] == 0

    def test_student_cannot_create(self, student_client):
        assert student_client.post("/api/classes", json={"name": "x"}).status_code == 403


class TestMembership:
    def test_join_by_code(self, student_client, app, teacher):
        from database import get_db
        with app.app_context():
            cls = ClassService.from_db(get_db()).create_class("Python 101", teacher["id"])
        resp = student_client.post("/api/classes/join", json={"code": cls["code"]})
        assert resp.status_code == 200
        me = student_client.get("/api/users/me").get_json()["user"]
        assert me["class_id"] == cls["id"]

    def test_join_unknown_code(self, student_client):
        resp = student_client.post("/api/classes/join", json={"code": "not-a-code"})
        assert resp.status_code == 404

    def test_join_replaces_previous_class(self, db, teacher, student, classroom):
        svc = ClassService.from_db(db)
        other = svc.create_class("Other", teacher["id"])
        svc.join(student["id"], other["code"])
        assert [s["id"] for s in svc.students(other["id"], teacher)] == [student["id"]]
        assert svc.students(classroom["id"], teacher) == []

    def test_teacher_cannot_join(self, db, teacher, classroom):
        with pytest.raises(Forbidden):
            ClassService.from_db(db).join(teacher["id"], classroom["code"])

    def test_add_and_remove_student(self, db, teacher, classroom, user_factory):
        bob = user_factory("bob", "student", "Bob")
        svc = ClassService.from_db(db)
        svc.add_student(classroom["id"], bob["id"], teacher)
        assert len(svc.students(classroom["id"], teacher)) == 2
        svc.remove_student(classroom["id"], bob["id"], teacher)
        assert len(svc.students(classroom["id"], teacher)) == 1

    def test_remove_non_member(self, db, teacher, classroom, user_factory):
        bob = user_factory("bob")
        with pytest.raises(ValidationError, match="not in this class"):
            ClassService.from_db(db).remove_student(classroom["id"], bob["id"], teacher)

    def test_other_teacher_cannot_manage(self, db, other_teacher, student, classroom):
        with pytest.raises(Forbidden):
            ClassService.from_db(db).remove_student(classroom["id"], student["id"], other_teacher)

    def test_roster_route(self, teacher_client, classroom, student):
        body = teacher_client.get(f"/api/classes/{classroom['id']}").get_json()
        assert body["class"]["student_count"] == 1
        assert body["students"][0]["username"] == student["username"]


class TestDeleteClass:
    def test_deletes_class_students_and_links(self, db, teacher, student, classroom, published):
        removed = ClassService.from_db(db).delete_class(classroom["id"], teacher)
        assert removed == 1
        with pytest.raises(NotFound):
            ClassService.from_db(db).get(classroom["id"])
        row = db.execute("SELECT deleted_at FROM users WHERE id = ?", (student["id"],)).fetchone()
        assert row["deleted_at"] is not None
        links = db.execute("SELECT COUNT(*) FROM assignment_classes WHERE class_id = ?",
                           (classroom["id"],)).fetchone()[0]
        assert links == 0

    def test_deleted_student_can_no_longer_log_in(self, teacher_client, client, student, classroom):
        assert teacher_client.delete(f"/api/classes/{classroom['id']}").status_code == 200
        resp = client.post("/api/login", json={"username": student["username"], "password": "secret123"})
        assert resp.status_code == 401

    def test_rollback_on_failure(self, db, teacher, student, classroom, monkeypatch):
        svc = ClassService.from_db(db)

        def boom(class_id):
            raise RuntimeError("locked")

        monkeypatch.setattr(svc.classes, "delete", boom)
        with pytest.raises(RuntimeError):
            svc.delete_class(classroom["id"], teacher)
        fresh = ClassService.from_db(db)
        assert fresh.get(classroom["id"])
        assert len(fresh.students(classroom["id"], teacher)) == 1

    def test_only_owner(self, other_teacher_client, classroom):
        assert other_teacher_client.delete(f"/api/classes/{classroom['id']}").status_code == 403


class TestStats:
    def test_counts(self, app, teacher_client, student_client, classroom, published, user_factory):
        from database import get_db
        bob = user_factory("bob")
        with app.app_context():
            ClassService.from_db(get_db()).join(bob["id"], classroom["code"])
        student_client.post(f"/api/assignments/{published['id']}/submit", json={"answers": {"q1": "A"}})

        stats = teacher_client.get(f"/api/classes/{classroom['id']}/stats").get_json()
        assert stats["student_count"] == 2
        assert stats["assignment_count"] == 1
        assert stats["unsubmitted_count"] == 1
        entry = stats["assignment_stats"][0]
        assert entry["submitted_count"] == 1
        assert entry["graded_count"] == 1
        assert entry["unsubmitted_count"] == 1
        assert entry["average_score"] == 0
