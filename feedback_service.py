"""Feedback board: anonymous posts, likes, and staff responses."""

from __future__ import annotations

import logging

from db_stores import FeedbackStoreDB
from errors import Forbidden, NotFound, ValidationError
from models import FEEDBACK_STATUSES, FEEDBACK_TYPES, STAFF_ROLES

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


class FeedbackService:
    def __init__(self, feedback: FeedbackStoreDB) -> None:
        self.feedback = feedback

    @classmethod
    def from_db(cls, db) -> "FeedbackService":
        return cls(FeedbackStoreDB(db))

    def create(self, type: str, title: str, content: str, anonymous_id: str) -> dict:
        title = (title or "").strip()
        content = (content or "").strip()
        if not title or not content:
            raise ValidationError("title and content are required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")
        type = type or "other"
        if type not in FEEDBACK_TYPES:
            raise ValidationError(f"type must be one of {', '.join(FEEDBACK_TYPES)}")
        item = self.feedback.create(type, title, content, anonymous_id or "")
        logger.info("Feedback %s created (%s)", item["id"], type)
        return item

    def list(self, type: str = "", status: str = "", search: str = "") -> list[dict]:
        return self.feedback.list_filtered(type=type or "", status=status or "",
                                           search=(search or "").strip())

    def get(self, feedback_id: int) -> dict:
        item = self.feedback.get(feedback_id)
        if not item:
            raise NotFound("feedback not found")
        return item

    def like(self, feedback_id: int) -> dict:
        self.get(feedback_id)
        self.feedback.like(feedback_id)
        return self.get(feedback_id)

    def update_status(self, feedback_id: int, status: str, responder_id: str) -> dict:
        if status not in FEEDBACK_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(FEEDBACK_STATUSES)}")
        self.get(feedback_id)
        self.feedback.update_status(feedback_id, status, responder_id)
        return self.get(feedback_id)

    def respond(self, feedback_id: int, response: str, responder_id: str) -> dict:
        response = (response or "").strip()
        if not response:
            raise ValidationError("response is required")
        self.get(feedback_id)
        self.feedback.respond(feedback_id, response, responder_id)
        return self.get(feedback_id)

    def stats(self) -> dict:
        return self.feedback.stats()

    def delete(self, feedback_id: int, actor_id: str, actor_role: str) -> None:
        item = self.get(feedback_id)
        is_author = bool(actor_id) and item["anonymous_id"] == actor_id
        if not is_author and actor_role not in STAFF_ROLES:
            raise Forbidden("only the author or staff can delete feedback")
        self.feedback.delete(feedback_id)
        logger.info("Feedback %s deleted by %s", feedback_id, actor_id or "anonymous")
