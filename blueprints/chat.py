"""Chat / Q&A routes."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from chat_service import ChatService
from database import get_db
from errors import ValidationError
from extensions import limiter
from helpers import current_actor, current_user_id, json_body

bp = Blueprint("chat", __name__)


def _service() -> ChatService:
    return ChatService.from_db(get_db())


@bp.route("/api/chat", methods=["POST"])
@limiter.limit("60 per hour")
def chat():
    data = json_body()
    result = _service().ask(
        session_id=str(data.get("session_id") or ""),
        user_id=current_user_id(),
        question=data.get("question", ""),
        anonymous_id=str(data.get("anonymous_id") or request.headers.get("X-Anonymous-ID", "")),
    )
    return jsonify(result)


@bp.route("/api/history")
@login_required
def history():
    session_id = request.args.get("session_id", "")
    if not session_id:
        raise ValidationError("session_id is required")
    return jsonify({"session_id": session_id, "messages": _service().history(session_id, current_actor())})


@bp.route("/api/sessions")
@login_required
def sessions():
    return jsonify({"sessions": _service().sessions_for(current_user_id())})
