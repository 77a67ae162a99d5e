"""Assignment catalog: authoring, AI generation, publishing and deletion."""

from __future__ import annotations

import io
import logging
from datetime import datetime

import qrcode

from agents.assignment_gen_agent import AssignmentGenAgent
from audit import log_event
from database import transaction
from db_stores import (
    AssignmentClassStoreDB,
    AssignmentStoreDB,
    ClassStoreDB,
    QuestionStoreDB,
    SubmissionStoreDB,
    UserStoreDB,
)
from errors import Conflict, Forbidden, NotFound, ValidationError
from helpers import parse_deadline
from models import (
    ASSIGNMENT_DRAFT,
    ASSIGNMENT_PUBLISHED,
    ASSIGNMENT_TYPES,
    QUESTION_TYPES,
    ROLE_ADMIN,
    ROLE_STUDENT,
)

logger = logging.getLogger(__name__)


def _clean_questions(questions) -> list[dict]:
    if not isinstance(questions, list):
        raise ValidationError("questions must be a list")
    cleaned = []
    for i, q in enumerate(questions, 1):
        if not isinstance(q, dict):
            raise ValidationError(f"question {i} must be an object")
        content = str(q.get("content") or "").strip()
        if not content:
            raise ValidationError(f"question {i} has no content")
        qtype = q.get("type") or "fill"
        if qtype not in QUESTION_TYPES:
            raise ValidationError(f"question {i} has unknown type {qtype!r}")
        try:
            score = int(q.get("score") or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"question {i} score must be an integer") from None
        if score < 0:
            raise ValidationError(f"question {i} score cannot be negative")
        cleaned.append({
            "id": str(q["id"]) if q.get("id") else None,
            "type": qtype,
            "content": content,
            "options": q.get("options"),
            "answer": q.get("answer", ""),
            "score": score,
        })
    ids = [q["id"] for q in cleaned if q["id"]]
    if len(ids) != len(set(ids)):
        raise ValidationError("question ids must be unique")
    return cleaned


class AssignmentService:
    def __init__(self, db, assignments: AssignmentStoreDB, questions: QuestionStoreDB,
                 links: AssignmentClassStoreDB, classes: ClassStoreDB,
                 users: UserStoreDB, submissions: SubmissionStoreDB,
                 generator: AssignmentGenAgent | None = None) -> None:
        self.db = db
        self.assignments = assignments
        self.questions = questions
        self.links = links
        self.classes = classes
        self.users = users
        self.submissions = submissions
        self.generator = generator or AssignmentGenAgent()

    @classmethod
    def from_db(cls, db) -> "AssignmentService":
        return cls(db, AssignmentStoreDB(db), QuestionStoreDB(db), AssignmentClassStoreDB(db),
                   ClassStoreDB(db), UserStoreDB(db), SubmissionStoreDB(db))

    # ── Lookup ────────────────────────────────────────────

    def get(self, assignment_id: str) -> dict:
        assignment = self.assignments.get(assignment_id)
        if not assignment:
            raise NotFound("assignment not found")
        return assignment

    def get_owned(self, assignment_id: str, actor: dict) -> dict:
        assignment = self.get(assignment_id)
        if actor["role"] != ROLE_ADMIN and assignment["teacher_id"] != actor["id"]:
            raise Forbidden("you do not own this assignment")
        return assignment

    def get_detail(self, assignment_id: str) -> dict:
        assignment = self.get(assignment_id)
        assignment["questions"] = [q.to_dict() for q in self.questions.list_for_assignment(assignment_id)]
        return assignment

    def get_for_student(self, assignment_id: str, student: dict) -> dict:
        """Detail as a student sees it: only when published to their class, no answer key."""
        link = self.links.get(assignment_id, student["class_id"]) if student.get("class_id") else None
        if not link:
            raise NotFound("assignment not found")
        detail = self.get_detail(assignment_id)
        for q in detail["questions"]:
            q.pop("answer", None)
        detail.pop("rubric", None)
        detail["deadline"] = link["deadline"]
        return detail

    def list_for_teacher(self, teacher_id: str) -> list[dict]:
        return self.assignments.list_for_teacher(teacher_id)

    def list_for_class(self, class_id: str) -> list[dict]:
        return self.assignments.list_published_for_class(class_id)

    def published_classes(self, assignment_id: str, actor: dict) -> list[dict]:
        self.get_owned(assignment_id, actor)
        return self.links.list_for_assignment(assignment_id)

    def share_link(self, assignment_id: str, actor: dict, base_url: str) -> str:
        """Link a student follows to open the assignment."""
        if actor["role"] == ROLE_STUDENT:
            self.get_for_student(assignment_id, actor)
        else:
            self.get(assignment_id)
        return f"{base_url.rstrip('/')}/assignments/do?id={assignment_id}"

    # ── Authoring ─────────────────────────────────────────

    def create_manual(self, teacher_id: str, title: str, description: str = "",
                      type: str = "mixed", questions: list | None = None,
                      rubric: dict | None = None) -> dict:
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        if type not in ASSIGNMENT_TYPES:
            raise ValidationError(f"type must be one of {', '.join(ASSIGNMENT_TYPES)}")
        if rubric is not None and not isinstance(rubric, dict):
            raise ValidationError("rubric must be an object")
        cleaned = _clean_questions(questions or [])

        assignment = self.assignments.create(
            title, description or "", teacher_id, type=type, status=ASSIGNMENT_DRAFT, rubric=rubric,
        )
        self.questions.create_many(assignment["id"], cleaned)
        logger.info("Teacher %s created assignment %s with %d questions",
                    teacher_id, assignment["id"], len(cleaned))
        return self.get_detail(assignment["id"])

    def create_by_ai(self, topic: str, difficulty: str, teacher_id: str) -> dict:
        """Generate an assignment with the model and persist it as a draft.

        Raises UpstreamFailure when the model call fails or its reply cannot
        be parsed; nothing is written in that case.
        """
        topic = (topic or "").strip()
        if not topic:
            raise ValidationError("topic is required")
        generated = self.generator.generate(topic, difficulty or "medium")

        assignment = self.assignments.create(
            generated.title, generated.description, teacher_id,
            type="mixed", status=ASSIGNMENT_DRAFT,
            rubric={"topic": topic, "difficulty": difficulty or "medium"},
        )
        self.questions.create_many(assignment["id"], generated.questions)
        logger.info("Generated assignment %s (%d questions) on %r",
                    assignment["id"], len(generated.questions), topic)
        return self.get_detail(assignment["id"])

    # ── Publishing ────────────────────────────────────────

    def publish(self, assignment_id: str, class_id: str, deadline: str | None, actor: dict) -> dict:
        """Publish to a class, or move the deadline if already published there."""
        assignment = self.get_owned(assignment_id, actor)
        due = parse_deadline(deadline).isoformat()

        if not class_id:
            raise ValidationError("class_id is required")
        cls = self.classes.get(class_id)
        if not cls:
            raise NotFound("class not found")
        if self.users.count_in_class(class_id) == 0:
            raise Conflict("class has no students")

        existing = self.links.get(assignment_id, class_id)
        if existing:
            self.links.update_deadline(existing["id"], due)
            record = self.links.get(assignment_id, class_id)
            logger.info("Moved deadline of %s for class %s to %s", assignment_id, class_id, due)
        else:
            record = self.links.create(assignment_id, class_id, due)
            if assignment["status"] == ASSIGNMENT_DRAFT:
                self.assignments.set_status(assignment_id, ASSIGNMENT_PUBLISHED)
            log_event("assignment_publish", actor["id"], f"assignment={assignment_id} class={class_id}")
        return record

    # ── Deletion ──────────────────────────────────────────

    def delete(self, assignment_id: str, actor: dict) -> None:
        self.get_owned(assignment_id, actor)
        with transaction(self.db):
            self.submissions.delete_for_assignment(assignment_id)
            self.questions.delete_for_assignment(assignment_id)
            self.links.delete_for_assignment(assignment_id)
            self.assignments.delete(assignment_id)
        log_event("assignment_delete", actor["id"], f"assignment={assignment_id}")


def is_past(deadline: str | None, now: datetime | None = None) -> bool:
    if not deadline:
        return False
    try:
        return (now or datetime.now()) > datetime.fromisoformat(deadline)
    except ValueError:
        logger.warning("Unreadable deadline %r treated as open", deadline)
        return False


def render_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
