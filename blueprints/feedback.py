"""Feedback board routes."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from database import get_db
from extensions import limiter
from feedback_service import FeedbackService
from helpers import current_user_id, json_body, teacher_required

bp = Blueprint("feedback", __name__)


def _service() -> FeedbackService:
    return FeedbackService.from_db(get_db())


def _author_token(data: dict | None = None) -> str:
    """The logged-in user's id, else the caller's anonymous token."""
    uid = current_user_id()
    if uid:
        return uid
    if data and data.get("anonymous_id"):
        return str(data["anonymous_id"])
    return request.args.get("anonymous_id", "") or request.headers.get("X-Anonymous-ID", "")


@bp.route("/api/feedback", methods=["POST"])
@limiter.limit("30 per hour")
def create_feedback():
    data = json_body()
    item = _service().create(
        type=data.get("type") or "other",
        title=data.get("title", ""),
        content=data.get("content", ""),
        anonymous_id=_author_token(data),
    )
    return jsonify({"feedback": item}), 201


@bp.route("/api/feedback")
def list_feedback():
    items = _service().list(
        type=request.args.get("type", ""),
        status=request.args.get("status", ""),
        search=request.args.get("search", ""),
    )
    return jsonify({"feedback": items})


@bp.route("/api/feedback/stats")
def feedback_stats():
    return jsonify(_service().stats())


@bp.route("/api/feedback/<int:feedback_id>")
def get_feedback(feedback_id):
    return jsonify({"feedback": _service().get(feedback_id)})


@bp.route("/api/feedback/<int:feedback_id>/like", methods=["POST"])
def like_feedback(feedback_id):
    item = _service().like(feedback_id)
    return jsonify({"like_count": item["like_count"]})


@bp.route("/api/feedback/<int:feedback_id>/status", methods=["PUT"])
@teacher_required
def update_status(feedback_id):
    data = json_body()
    item = _service().update_status(feedback_id, data.get("status", ""), current_user_id())
    return jsonify({"feedback": item})


@bp.route("/api/feedback/<int:feedback_id>/respond", methods=["POST"])
@teacher_required
def respond(feedback_id):
    data = json_body()
    item = _service().respond(feedback_id, data.get("response", ""), current_user_id())
    return jsonify({"feedback": item})


@bp.route("/api/feedback/<int:feedback_id>", methods=["DELETE"])
def delete_feedback(feedback_id):
    data = request.get_json(silent=True)
    role = current_user.role if current_user.is_authenticated else ""
    _service().delete(feedback_id, _author_token(data if isinstance(data, dict) else None), role)
    return jsonify({"message": "feedback deleted"})
