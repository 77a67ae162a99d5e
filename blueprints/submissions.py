"""Submission routes: submit, student views, manual overrides, regrade and download."""

from __future__ import annotations

import io

from flask import Blueprint, jsonify, send_file
from flask_login import login_required

from chat_service import ChatService
from database import get_db
from helpers import current_actor, current_user_id, json_body, student_required, teacher_required
from submission_service import SubmissionService

bp = Blueprint("submissions", __name__)


def _service() -> SubmissionService:
    return SubmissionService.from_db(get_db())


# ── Student side ───────────────────────────────────────────

@bp.route("/api/assignments/<assignment_id>/submit", methods=["POST"])
@student_required
def submit(assignment_id):
    data = json_body()
    sub = _service().submit(
        assignment_id,
        current_user_id(),
        answers=data.get("answers"),
        code_content=data.get("code") or data.get("code_content") or "",
        student_name=data.get("student_name") or "",
    )
    return jsonify({"message": "submitted", "submission": sub})


@bp.route("/api/assignments/<assignment_id>/student/<student_id>")
@login_required
def student_submission(assignment_id, student_id):
    return jsonify(_service().submission_for_student(assignment_id, student_id, current_actor()))


@bp.route("/api/my/assignments")
@student_required
def my_assignments():
    return jsonify({"assignments": _service().my_assignments(current_user_id())})


@bp.route("/api/students/<student_id>/assignments")
@teacher_required
def student_assignments(student_id):
    return jsonify({"assignments": _service().student_assignments(student_id, current_actor())})


@bp.route("/api/students/<student_id>/sessions")
@teacher_required
def student_sessions(student_id):
    sessions = ChatService.from_db(get_db()).student_sessions(student_id, current_actor())
    return jsonify({"sessions": sessions})


# ── Teacher overrides ──────────────────────────────────────

@bp.route("/api/submissions/<submission_id>/score", methods=["PUT"])
@teacher_required
def set_score(submission_id):
    data = json_body()
    sub = _service().set_score(submission_id, data.get("score"), current_actor())
    return jsonify({"submission": sub})


@bp.route("/api/submissions/<submission_id>/feedback", methods=["PUT"])
@teacher_required
def set_feedback(submission_id):
    data = json_body()
    sub = _service().set_teacher_feedback(submission_id, data.get("feedback", ""), current_actor())
    return jsonify({"submission": sub})


@bp.route("/api/submissions/<submission_id>/questions/<question_id>/score", methods=["PUT"])
@teacher_required
def set_question_score(submission_id, question_id):
    data = json_body()
    sub = _service().set_question_score(submission_id, question_id, data.get("score"), current_actor())
    return jsonify({"submission": sub})


@bp.route("/api/submissions/<submission_id>/questions/<question_id>/feedback", methods=["PUT"])
@teacher_required
def set_question_feedback(submission_id, question_id):
    data = json_body()
    sub = _service().set_question_feedback(submission_id, question_id,
                                           data.get("feedback", ""), current_actor())
    return jsonify({"submission": sub})


@bp.route("/api/submissions/<submission_id>/regrade", methods=["POST"])
@teacher_required
def regrade(submission_id):
    _service().regrade(submission_id, current_actor())
    return jsonify({"message": "regrade accepted"}), 202


@bp.route("/api/submissions/<submission_id>/download")
@teacher_required
def download_code(submission_id):
    filename, code = _service().download_code(submission_id, current_actor())
    return send_file(
        io.BytesIO(code.encode("utf-8")),
        mimetype="text/plain; charset=utf-8",
        as_attachment=True,
        download_name=filename,
    )
