"""Shared value types: roles, statuses, and the question model."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

ROLE_TEACHER = "teacher"
ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"
ROLES = (ROLE_TEACHER, ROLE_STUDENT, ROLE_ADMIN)
STAFF_ROLES = (ROLE_TEACHER, ROLE_ADMIN)

ASSIGNMENT_TYPES = ("code", "choice", "fill", "mixed")
ASSIGNMENT_DRAFT = "draft"
ASSIGNMENT_PUBLISHED = "published"
# Defined for completeness; nothing transitions an assignment into it.
ASSIGNMENT_CLOSED = "closed"

QUESTION_TYPES = ("choice", "fill", "code")

SUBMISSION_SUBMITTED = "submitted"
SUBMISSION_GRADED = "graded"

FEEDBACK_TYPES = ("bug", "feature", "praise", "question", "suggestion", "other")
FEEDBACK_STATUSES = ("open", "pending", "processing", "resolved", "closed")


@dataclass(frozen=True)
class ChoiceOptions:
    """Answer options of a multiple-choice question."""

    options: tuple[str, ...] = ()

    def to_list(self) -> list[str]:
        return list(self.options)


# Fill-in and code questions carry no options.
QuestionOptions = Union[ChoiceOptions, None]


def parse_options(question_type: str, raw: Any) -> QuestionOptions:
    """Build the tagged options value from a JSON string or a list.

    Anything that is not a list of scalars collapses to no options.
    """
    if question_type != "choice":
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw else []
        except ValueError:
            return ChoiceOptions()
    if isinstance(raw, dict):
        # {"A": "...", "B": "..."} style option maps keep their key order
        raw = [f"{k}. {v}" for k, v in raw.items()]
    if not isinstance(raw, (list, tuple)):
        return ChoiceOptions()
    return ChoiceOptions(tuple(str(o) for o in raw if not isinstance(o, (dict, list))))


def dump_options(options: QuestionOptions) -> str:
    return json.dumps(options.to_list() if options else [], ensure_ascii=False)


@dataclass
class Question:
    id: str
    assignment_id: str
    type: str
    content: str
    answer: str = ""
    score: int = 0
    order_num: int = 0
    options: QuestionOptions = field(default=None)

    @classmethod
    def from_row(cls, row) -> "Question":
        return cls(
            id=row["id"],
            assignment_id=row["assignment_id"],
            type=row["type"],
            content=row["content"],
            answer=row["answer"],
            score=row["score"],
            order_num=row["order_num"],
            options=parse_options(row["type"], row["options"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "type": self.type,
            "content": self.content,
            "options": self.options.to_list() if self.options else [],
            "answer": self.answer,
            "score": self.score,
            "order_num": self.order_num,
        }
