"""Class routes: creation, join codes, rosters, deletion and statistics."""

from __future__ import annotations

from flask import Blueprint, jsonify

from audit import log_event
from class_service import ClassService
from database import get_db
from helpers import current_actor, current_user_id, json_body, student_required, teacher_required

bp = Blueprint("classes", __name__)


def _service() -> ClassService:
    return ClassService.from_db(get_db())


@bp.route("/api/classes", methods=["POST"])
@teacher_required
def create_class():
    data = json_body()
    cls = _service().create_class(data.get("name", ""), current_user_id())
    return jsonify({"class": cls}), 201


@bp.route("/api/classes")
@teacher_required
def list_classes():
    return jsonify({"classes": _service().list_for_teacher(current_user_id())})


@bp.route("/api/classes/join", methods=["POST"])
@student_required
def join_class():
    data = json_body()
    cls = _service().join(current_user_id(), str(data.get("code", "")))
    return jsonify({"class": {"id": cls["id"], "name": cls["name"]}})


@bp.route("/api/classes/<class_id>")
@teacher_required
def class_detail(class_id):
    svc = _service()
    cls = svc.get_owned(class_id, current_actor())
    students = svc.students(class_id, current_actor())
    return jsonify({"class": {**cls, "student_count": len(students)}, "students": students})


@bp.route("/api/classes/<class_id>/students")
@teacher_required
def class_students(class_id):
    return jsonify({"students": _service().students(class_id, current_actor())})


@bp.route("/api/classes/<class_id>/students", methods=["POST"])
@teacher_required
def add_student(class_id):
    data = json_body()
    student = _service().add_student(class_id, str(data.get("student_id", "")), current_actor())
    return jsonify({"student": student}), 201


@bp.route("/api/classes/<class_id>/students/<student_id>", methods=["DELETE"])
@teacher_required
def remove_student(class_id, student_id):
    _service().remove_student(class_id, student_id, current_actor())
    return jsonify({"message": "student removed"})


@bp.route("/api/classes/<class_id>", methods=["DELETE"])
@teacher_required
def delete_class(class_id):
    removed = _service().delete_class(class_id, current_actor())
    log_event("class_delete", current_user_id(), f"class={class_id} students={removed}")
    return jsonify({"message": "class deleted", "deleted_students": removed})


@bp.route("/api/classes/<class_id>/stats")
@teacher_required
def class_stats(class_id):
    return jsonify(_service().stats(class_id, current_actor()))
