"""Class registry: classes, join codes, and student membership."""

from __future__ import annotations

import logging
import secrets
import sqlite3

from database import transaction
from db_stores import (
    AssignmentClassStoreDB,
    AssignmentStoreDB,
    ClassStoreDB,
    SubmissionStoreDB,
    UserStoreDB,
)
from errors import Conflict, Forbidden, NotFound, ValidationError
from models import ROLE_ADMIN, ROLE_STUDENT, SUBMISSION_GRADED

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 5


def generate_join_code() -> str:
    """Six random digits, zero padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


class ClassService:
    def __init__(self, db, classes: ClassStoreDB, users: UserStoreDB,
                 assignments: AssignmentStoreDB, links: AssignmentClassStoreDB,
                 submissions: SubmissionStoreDB) -> None:
        self.db = db
        self.classes = classes
        self.users = users
        self.assignments = assignments
        self.links = links
        self.submissions = submissions

    @classmethod
    def from_db(cls, db) -> "ClassService":
        return cls(db, ClassStoreDB(db), UserStoreDB(db), AssignmentStoreDB(db),
                   AssignmentClassStoreDB(db), SubmissionStoreDB(db))

    # ── Lookup & ownership ────────────────────────────────

    def get(self, class_id: str) -> dict:
        cls = self.classes.get(class_id)
        if not cls:
            raise NotFound("class not found")
        return cls

    def get_owned(self, class_id: str, actor: dict) -> dict:
        cls = self.get(class_id)
        if actor["role"] != ROLE_ADMIN and cls["teacher_id"] != actor["id"]:
            raise Forbidden("you do not own this class")
        return cls

    def list_for_teacher(self, teacher_id: str) -> list[dict]:
        return self.classes.list_for_teacher(teacher_id)

    def students(self, class_id: str, actor: dict) -> list[dict]:
        self.get_owned(class_id, actor)
        return self.users.students_in_class(class_id)

    # ── Mutations ─────────────────────────────────────────

    def create_class(self, name: str, teacher_id: str) -> dict:
        name = (name or "").strip()
        if not name:
            raise ValidationError("class name is required")
        for _ in range(CODE_ATTEMPTS):
            code = generate_join_code()
            if self.classes.code_exists(code):
                continue
            try:
                return self.classes.create(name, teacher_id, code)
            except sqlite3.IntegrityError:
                # Lost a race for the same code; draw again.
                self.db.rollback()
        raise Conflict("could not allocate a unique join code, try again")

    def join(self, student_id: str, code: str) -> dict:
        student = self.users.get(student_id)
        if not student or student["role"] != ROLE_STUDENT:
            raise Forbidden("only students can join a class")
        code = (code or "").strip()
        if not code:
            raise ValidationError("join code is required")
        cls = self.classes.get_by_code(code)
        if not cls:
            raise NotFound("no class with that join code")
        if student["class_id"] and student["class_id"] != cls["id"]:
            logger.info("Student %s moves from class %s to %s", student_id, student["class_id"], cls["id"])
        self.users.set_class(student_id, cls["id"])
        return cls

    def add_student(self, class_id: str, student_id: str, actor: dict) -> dict:
        self.get_owned(class_id, actor)
        student = self.users.get(student_id)
        if not student or student["role"] != ROLE_STUDENT:
            raise NotFound("student not found")
        self.users.set_class(student_id, class_id)
        return self.users.get(student_id)

    def remove_student(self, class_id: str, student_id: str, actor: dict) -> None:
        self.get_owned(class_id, actor)
        student = self.users.get(student_id)
        if not student or student["role"] != ROLE_STUDENT:
            raise NotFound("student not found")
        if student["class_id"] != class_id:
            raise ValidationError("student is not in this class")
        self.users.set_class(student_id, None)

    def delete_class(self, class_id: str, actor: dict) -> int:
        """Delete the class together with its student accounts.

        Runs as one transaction. A student account that fails to delete is
        logged and skipped. Returns the number of accounts removed.
        """
        self.get_owned(class_id, actor)
        members = self.users.students_in_class(class_id)
        removed = 0
        with transaction(self.db):
            for student in members:
                try:
                    self.users.soft_delete(student["id"])
                    removed += 1
                except sqlite3.Error:
                    logger.warning("Could not delete student %s of class %s", student["id"], class_id,
                                   exc_info=True)
            self.links.delete_for_class(class_id)
            self.classes.delete(class_id)
        logger.info("Deleted class %s with %d/%d student accounts", class_id, removed, len(members))
        return removed

    # ── Statistics ────────────────────────────────────────

    def stats(self, class_id: str, actor: dict) -> dict:
        self.get_owned(class_id, actor)
        student_ids = {s["id"] for s in self.users.students_in_class(class_id)}
        student_count = len(student_ids)
        assignments = self.assignments.list_published_for_class(class_id)

        assignment_stats = []
        unsubmitted_total = 0
        for a in assignments:
            subs = [s for s in self.submissions.list_for_assignment(a["id"]) if s["student_id"] in student_ids]
            graded = [s for s in subs if s["status"] == SUBMISSION_GRADED]
            scores = [s["total_score"] for s in graded if s["total_score"] is not None]
            unsubmitted = student_count - len(subs)
            unsubmitted_total += unsubmitted
            assignment_stats.append({
                "assignment_id": a["id"],
                "title": a["title"],
                "deadline": a.get("class_deadline"),
                "submitted_count": len(subs),
                "graded_count": len(graded),
                "unsubmitted_count": unsubmitted,
                "average_score": round(sum(scores) / len(scores), 1) if scores else None,
            })

        return {
            "class_id": class_id,
            "student_count": student_count,
            "assignment_count": len(assignments),
            "unsubmitted_count": unsubmitted_total,
            "assignment_stats": assignment_stats,
        }
