"""Assignment routes: authoring, AI generation, publishing and deletion."""

from __future__ import annotations

import io

from flask import Blueprint, current_app, jsonify, send_file
from flask_login import current_user, login_required

from assignment_service import AssignmentService, render_qr_png
from database import get_db
from extensions import limiter
from helpers import current_actor, current_user_id, json_body, teacher_required
from submission_service import SubmissionService

bp = Blueprint("assignments", __name__)


def _service() -> AssignmentService:
    return AssignmentService.from_db(get_db())


@bp.route("/api/assignments", methods=["POST"])
@teacher_required
def create_assignment():
    data = json_body()
    assignment = _service().create_manual(
        teacher_id=current_user_id(),
        title=data.get("title", ""),
        description=data.get("description", ""),
        type=data.get("type") or "mixed",
        questions=data.get("questions") or [],
        rubric=data.get("rubric"),
    )
    return jsonify({"assignment": assignment}), 201


@bp.route("/api/assignments/generate", methods=["POST"])
@teacher_required
@limiter.limit("20 per hour")
def generate_assignment():
    data = json_body()
    assignment = _service().create_by_ai(
        topic=data.get("topic", ""),
        difficulty=data.get("difficulty") or "medium",
        teacher_id=current_user_id(),
    )
    return jsonify({"assignment": assignment}), 201


@bp.route("/api/assignments")
@login_required
def list_assignments():
    svc = _service()
    if current_user.is_staff:
        return jsonify({"assignments": svc.list_for_teacher(current_user.id)})
    if not current_user.class_id:
        return jsonify({"assignments": []})
    return jsonify({"assignments": svc.list_for_class(current_user.class_id)})


@bp.route("/api/assignments/<assignment_id>")
@login_required
def assignment_detail(assignment_id):
    svc = _service()
    if current_user.is_staff:
        return jsonify({"assignment": svc.get_detail(assignment_id)})
    return jsonify({"assignment": svc.get_for_student(assignment_id, current_actor())})


@bp.route("/api/assignments/<assignment_id>/qrcode")
@login_required
def assignment_qrcode(assignment_id):
    link = _service().share_link(
        assignment_id, current_actor(), current_app.config["ASSIGNMENT_LINK_BASE_URL"],
    )
    return send_file(
        io.BytesIO(render_qr_png(link)),
        mimetype="image/png",
        download_name=f"assignment-{assignment_id[:8]}.png",
    )


@bp.route("/api/assignments/<assignment_id>/publish", methods=["POST"])
@teacher_required
def publish_assignment(assignment_id):
    data = json_body()
    record = _service().publish(
        assignment_id,
        class_id=str(data.get("class_id") or ""),
        deadline=data.get("deadline"),
        actor=current_actor(),
    )
    return jsonify({"message": "assignment published", "record": record})


@bp.route("/api/assignments/<assignment_id>/published")
@teacher_required
def published_classes(assignment_id):
    return jsonify({"classes": _service().published_classes(assignment_id, current_actor())})


@bp.route("/api/assignments/<assignment_id>/submissions")
@teacher_required
def assignment_submissions(assignment_id):
    _service().get_owned(assignment_id, current_actor())
    subs = SubmissionService.from_db(get_db())
    return jsonify({
        "submissions": subs.list_for_assignment(assignment_id),
        "pending_count": subs.pending_count(assignment_id),
    })


@bp.route("/api/assignments/<assignment_id>", methods=["DELETE"])
@teacher_required
def delete_assignment(assignment_id):
    _service().delete(assignment_id, current_actor())
    return jsonify({"message": "assignment deleted"})
