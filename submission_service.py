"""
Submission & grading pipeline.

Students submit (one submission per assignment, later submits overwrite),
grading runs in the background through tasks.enqueue_in, and teachers can
override any part of the result afterwards.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from flask import current_app, has_app_context

import tasks
from agents.grading_agent import GradingAgent
from assignment_service import is_past
from audit import log_event
from database import get_db
from db_stores import (
    AssignmentClassStoreDB,
    AssignmentStoreDB,
    ClassStoreDB,
    QuestionStoreDB,
    SubmissionStoreDB,
    UserStoreDB,
)
from errors import Forbidden, NotFound, ValidationError
from models import (
    ROLE_ADMIN,
    ROLE_STUDENT,
    STAFF_ROLES,
    SUBMISSION_GRADED,
    SUBMISSION_SUBMITTED,
)

logger = logging.getLogger(__name__)

MAX_TOTAL_SCORE = 100
UNSUBMITTED = "unsubmitted"


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def _serialize_map(name: str, value: dict | None) -> str | None:
    """JSON-encode one per-question map; a failure drops only that map."""
    if value is None:
        return None
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        logger.warning("Could not serialize %s, leaving it unchanged", name, exc_info=True)
        return None


def _summary(sub: dict | None) -> dict | None:
    if not sub:
        return None
    return {
        "id": sub["id"],
        "status": sub["status"],
        "total_score": sub["total_score"],
        "updated_at": sub["updated_at"],
    }


def run_grading_job(submission_id: str) -> None:
    """Background entry point: grade one submission in an app context.

    RQ workers call this outside any Flask app, so build one when needed.
    """
    if not has_app_context():
        from app import create_app
        with create_app().app_context():
            return run_grading_job(submission_id)
    SubmissionService.from_db(get_db()).grade(submission_id)
    return None


class SubmissionService:
    def __init__(self, db, submissions: SubmissionStoreDB, assignments: AssignmentStoreDB,
                 questions: QuestionStoreDB, links: AssignmentClassStoreDB,
                 users: UserStoreDB, classes: ClassStoreDB,
                 grader: GradingAgent | None = None, grading_delay: float = 0) -> None:
        self.db = db
        self.submissions = submissions
        self.assignments = assignments
        self.questions = questions
        self.links = links
        self.users = users
        self.classes = classes
        self.grader = grader or GradingAgent()
        self.grading_delay = grading_delay

    @classmethod
    def from_db(cls, db) -> "SubmissionService":
        delay = float(current_app.config.get("GRADING_DELAY_SECONDS", 1)) if has_app_context() else 0
        return cls(db, SubmissionStoreDB(db), AssignmentStoreDB(db), QuestionStoreDB(db),
                   AssignmentClassStoreDB(db), UserStoreDB(db), ClassStoreDB(db),
                   grading_delay=delay)

    # ── Lookup & access ───────────────────────────────────

    def get(self, submission_id: str) -> dict:
        sub = self.submissions.get(submission_id)
        if not sub:
            raise NotFound("submission not found")
        return sub

    def _get_for_staff(self, submission_id: str, actor: dict) -> dict:
        sub = self.get(submission_id)
        if actor["role"] == ROLE_ADMIN:
            return sub
        assignment = self.assignments.get(sub["assignment_id"])
        if not assignment or assignment["teacher_id"] != actor["id"]:
            raise Forbidden("you do not own this assignment")
        return sub

    def _check_can_view_student(self, student: dict, actor: dict) -> None:
        if actor["role"] == ROLE_ADMIN or actor["id"] == student["id"]:
            return
        if actor["role"] not in STAFF_ROLES:
            raise Forbidden()
        cls = self.classes.get(student["class_id"]) if student.get("class_id") else None
        if not cls or cls["teacher_id"] != actor["id"]:
            raise Forbidden("student is not in one of your classes")

    # ── Submit ────────────────────────────────────────────

    def submit(self, assignment_id: str, student_id: str, answers: dict | None,
               code_content: str = "", student_name: str = "") -> dict:
        student = self.users.get(student_id)
        if not student or student["role"] != ROLE_STUDENT:
            raise Forbidden("only students can submit")
        if not student["class_id"]:
            raise ValidationError("you are not in a class")

        if not self.assignments.get(assignment_id):
            raise NotFound("assignment not found")

        link = self.links.get(assignment_id, student["class_id"])
        if not link:
            raise ValidationError("assignment is not published to this class")
        if is_past(link["deadline"]):
            raise ValidationError("the deadline for this assignment has passed")

        if answers is None:
            answers = {}
        if not isinstance(answers, dict):
            raise ValidationError("answers must be an object keyed by question id")
        answers = {str(k): v for k, v in answers.items()}
        code_content = code_content or ""
        name = (student_name or "").strip() or student["display_name"] or student["username"]

        existing = self.submissions.get_for(assignment_id, student_id)
        if existing:
            sub = self.submissions.overwrite_answers(existing["id"], name, answers, code_content)
            logger.info("Student %s resubmitted %s", student_id, assignment_id)
        else:
            sub = self.submissions.create(assignment_id, student_id, name, answers, code_content)
            logger.info("Student %s submitted %s", student_id, assignment_id)

        tasks.enqueue_in(self.grading_delay, run_grading_job, sub["id"])
        return sub

    # ── Grading ───────────────────────────────────────────

    def grade(self, submission_id: str) -> dict:
        """Grade a submission with the model and store the result.

        A model call failure raises UpstreamFailure and leaves the
        submission as it was. An unreadable reply still marks it graded.
        """
        sub = self.get(submission_id)
        assignment = self.assignments.get(sub["assignment_id"])
        if not assignment:
            raise NotFound("assignment not found")
        questions = self.questions.list_for_assignment(assignment["id"])

        result = self.grader.grade(assignment, questions, sub)

        self.submissions.save_grade(
            submission_id,
            total_score=result.total_score,
            ai_feedback=result.ai_feedback,
            question_scores=_serialize_map("question_scores", result.question_scores),
            question_feedback=_serialize_map("question_feedback", result.question_feedback),
            status=SUBMISSION_GRADED,
        )
        logger.info("Graded submission %s: score=%s parsed=%s",
                    submission_id, result.total_score, result.parsed)
        return self.submissions.get(submission_id)

    def regrade(self, submission_id: str, actor: dict) -> None:
        self._get_for_staff(submission_id, actor)
        tasks.enqueue_in(self.grading_delay, run_grading_job, submission_id)
        logger.info("Regrade of %s requested by %s", submission_id, actor["id"])

    # ── Manual overrides ──────────────────────────────────

    def set_score(self, submission_id: str, score, actor: dict) -> dict:
        self._get_for_staff(submission_id, actor)
        score = _as_int(score, "score")
        if not 0 <= score <= MAX_TOTAL_SCORE:
            raise ValidationError(f"score must be between 0 and {MAX_TOTAL_SCORE}")
        self.submissions.set_total_score(submission_id, score)
        log_event("score_override", actor["id"], f"submission={submission_id} score={score}")
        return self.submissions.get(submission_id)

    def set_teacher_feedback(self, submission_id: str, feedback: str, actor: dict) -> dict:
        self._get_for_staff(submission_id, actor)
        if not isinstance(feedback, str):
            raise ValidationError("feedback must be a string")
        self.submissions.set_teacher_feedback(submission_id, feedback)
        return self.submissions.get(submission_id)

    def set_question_score(self, submission_id: str, question_id: str, score, actor: dict) -> dict:
        sub = self._get_for_staff(submission_id, actor)
        question = self.questions.get(sub["assignment_id"], question_id)
        if not question:
            raise NotFound("question not found")
        score = _as_int(score, "score")
        if not 0 <= score <= question.score:
            raise ValidationError(f"score must be between 0 and {question.score}")

        scores = dict(sub["question_scores"] or {})
        scores[question_id] = score
        total = 0
        for value in scores.values():
            try:
                total += int(value)
            except (TypeError, ValueError):
                continue
        self.submissions.set_question_scores(submission_id, scores, total)
        log_event("score_override", actor["id"],
                  f"submission={submission_id} question={question_id} score={score}")
        return self.submissions.get(submission_id)

    def set_question_feedback(self, submission_id: str, question_id: str, feedback: str,
                              actor: dict) -> dict:
        sub = self._get_for_staff(submission_id, actor)
        if not self.questions.get(sub["assignment_id"], question_id):
            raise NotFound("question not found")
        if not isinstance(feedback, str):
            raise ValidationError("feedback must be a string")
        comments = dict(sub["question_feedback"] or {})
        comments[question_id] = feedback
        self.submissions.set_question_feedback(submission_id, comments)
        return self.submissions.get(submission_id)

    def download_code(self, submission_id: str, actor: dict, now: datetime | None = None) -> tuple[str, str]:
        """Return ``(filename, code)`` for a submission's code blob."""
        sub = self._get_for_staff(submission_id, actor)
        name = (sub["student_name"] or "student").replace("/", "_").replace("\\", "_")
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return f"{name}-{sub['assignment_id'][:8]}-{stamp}.txt", sub["code_content"] or ""

    # ── Views ─────────────────────────────────────────────

    def list_for_assignment(self, assignment_id: str) -> list[dict]:
        return self.submissions.list_for_assignment(assignment_id)

    def pending_count(self, assignment_id: str) -> int:
        return self.submissions.count(assignment_id, SUBMISSION_SUBMITTED)

    def submission_for_student(self, assignment_id: str, student_id: str, actor: dict) -> dict:
        student = self.users.get(student_id)
        if not student:
            raise NotFound("student not found")
        self._check_can_view_student(student, actor)
        if not self.assignments.get(assignment_id):
            raise NotFound("assignment not found")
        sub = self.submissions.get_for(assignment_id, student_id)
        if not sub:
            return {"submitted": False, "submission": None}
        return {"submitted": True, "submission": sub}

    def my_assignments(self, student_id: str) -> list[dict]:
        student = self.users.get(student_id)
        if not student:
            raise NotFound("student not found")
        if not student["class_id"]:
            return []
        items = []
        for a in self.assignments.list_published_for_class(student["class_id"]):
            sub = self.submissions.get_for(a["id"], student_id)
            items.append({
                "id": a["id"],
                "title": a["title"],
                "description": a["description"],
                "type": a["type"],
                "deadline": a.get("class_deadline") or a.get("deadline"),
                "published_at": a.get("published_at"),
                "submission_status": sub["status"] if sub else UNSUBMITTED,
                "submission": _summary(sub),
            })
        return items

    def student_assignments(self, student_id: str, actor: dict) -> list[dict]:
        student = self.users.get(student_id)
        if not student or student["role"] != ROLE_STUDENT:
            raise NotFound("student not found")
        self._check_can_view_student(student, actor)
        return self.my_assignments(student_id)
