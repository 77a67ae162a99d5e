"""
DB-backed store classes for the classroom assistant.

Each store wraps one connection handed to it by the caller, so services can be
built over any connection (request-scoped, background task, test fixture).
Rows come back as plain dicts; JSON blob columns are decoded on the way out.
Write methods commit, except the ``*_for_*`` / ``soft_delete`` / ``delete``
helpers that take part in multi-table deletes: their caller owns the
transaction.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime

from models import (
    ASSIGNMENT_PUBLISHED,
    ROLE_STUDENT,
    SUBMISSION_SUBMITTED,
    Question,
    dump_options,
    parse_options,
)


def _now() -> str:
    return datetime.now().isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _loads(raw: str | None, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


# ── Users ──────────────────────────────────────────────────

class UserStoreDB:
    """Live (not soft-deleted) user accounts."""

    _COLUMNS = "id, username, display_name, role, class_id, created_at, updated_at"

    def __init__(self, db) -> None:
        self.db = db

    def create(self, username: str, password_hash: str, display_name: str, role: str) -> dict:
        user_id = _new_id()
        now = _now()
        self.db.execute(
            "INSERT INTO users (id, username, password_hash, display_name, role, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, username, password_hash, display_name, role, now, now),
        )
        self.db.commit()
        return self.get(user_id)

    def get(self, user_id: str) -> dict | None:
        row = self.db.execute(
            f"SELECT {self._COLUMNS} FROM users WHERE id = ? AND deleted_at IS NULL",
            (user_id,),
        ).fetchone()
        return dict(row) if row else None

    def get_with_password(self, username: str) -> dict | None:
        row = self.db.execute(
            f"SELECT {self._COLUMNS}, password_hash FROM users "
            "WHERE username = ? AND deleted_at IS NULL",
            (username,),
        ).fetchone()
        return dict(row) if row else None

    def password_hash(self, user_id: str) -> str | None:
        row = self.db.execute(
            "SELECT password_hash FROM users WHERE id = ? AND deleted_at IS NULL", (user_id,),
        ).fetchone()
        return row["password_hash"] if row else None

    def username_taken(self, username: str) -> bool:
        # Soft-deleted accounts keep their username reserved.
        row = self.db.execute("SELECT 1 FROM users WHERE username = ?", (username,)).fetchone()
        return row is not None

    def get_by_username(self, username: str) -> dict | None:
        row = self.db.execute(
            f"SELECT {self._COLUMNS} FROM users WHERE username = ? AND deleted_at IS NULL",
            (username,),
        ).fetchone()
        return dict(row) if row else None

    def students_in_class(self, class_id: str) -> list[dict]:
        rows = self.db.execute(
            f"SELECT {self._COLUMNS} FROM users "
            "WHERE class_id = ? AND role = ? AND deleted_at IS NULL ORDER BY display_name, username",
            (class_id, ROLE_STUDENT),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_in_class(self, class_id: str) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) AS cnt FROM users WHERE class_id = ? AND role = ? AND deleted_at IS NULL",
            (class_id, ROLE_STUDENT),
        ).fetchone()
        return row["cnt"]

    def set_class(self, user_id: str, class_id: str | None) -> None:
        self.db.execute(
            "UPDATE users SET class_id = ?, updated_at = ? WHERE id = ?",
            (class_id, _now(), user_id),
        )
        self.db.commit()

    def set_password_hash(self, user_id: str, password_hash: str) -> None:
        self.db.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (password_hash, _now(), user_id),
        )
        self.db.commit()

    def soft_delete(self, user_id: str) -> None:
        now = _now()
        self.db.execute(
            "UPDATE users SET deleted_at = ?, class_id = NULL, updated_at = ? WHERE id = ?",
            (now, now, user_id),
        )


# ── Classes ────────────────────────────────────────────────

class ClassStoreDB:
    """Classes and their join codes."""

    def __init__(self, db) -> None:
        self.db = db

    def create(self, name: str, teacher_id: str, code: str) -> dict:
        class_id = _new_id()
        now = _now()
        self.db.execute(
            "INSERT INTO classes (id, name, teacher_id, code, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (class_id, name, teacher_id, code, now, now),
        )
        self.db.commit()
        return self.get(class_id)

    def get(self, class_id: str) -> dict | None:
        row = self.db.execute("SELECT * FROM classes WHERE id = ?", (class_id,)).fetchone()
        return dict(row) if row else None

    def get_by_code(self, code: str) -> dict | None:
        row = self.db.execute("SELECT * FROM classes WHERE code = ?", (code,)).fetchone()
        return dict(row) if row else None

    def code_exists(self, code: str) -> bool:
        return self.db.execute("SELECT 1 FROM classes WHERE code = ?", (code,)).fetchone() is not None

    def list_for_teacher(self, teacher_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT c.*, COUNT(u.id) AS student_count "
            "FROM classes c LEFT JOIN users u "
            "ON u.class_id = c.id AND u.role = ? AND u.deleted_at IS NULL "
            "WHERE c.teacher_id = ? GROUP BY c.id ORDER BY c.created_at DESC",
            (ROLE_STUDENT, teacher_id),
        ).fetchall()
        return [dict(r) for r in rows]

    def delete(self, class_id: str) -> None:
        self.db.execute("DELETE FROM classes WHERE id = ?", (class_id,))


# ── Assignments & questions ────────────────────────────────

class AssignmentStoreDB:
    def __init__(self, db) -> None:
        self.db = db

    def create(self, title: str, description: str, teacher_id: str,
               type: str = "mixed", status: str = "draft",
               rubric: dict | None = None, deadline: str | None = None) -> dict:
        assignment_id = _new_id()
        now = _now()
        self.db.execute(
            "INSERT INTO assignments (id, title, description, teacher_id, type, status, "
            "rubric, deadline, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (assignment_id, title, description, teacher_id, type, status,
             json.dumps(rubric or {}, ensure_ascii=False), deadline, now, now),
        )
        self.db.commit()
        return self.get(assignment_id)

    @staticmethod
    def _row(row) -> dict:
        d = dict(row)
        d["rubric"] = _loads(d.get("rubric"), {})
        return d

    def get(self, assignment_id: str) -> dict | None:
        row = self.db.execute("SELECT * FROM assignments WHERE id = ?", (assignment_id,)).fetchone()
        return self._row(row) if row else None

    def list_for_teacher(self, teacher_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM assignments WHERE teacher_id = ? ORDER BY created_at DESC",
            (teacher_id,),
        ).fetchall()
        return [self._row(r) for r in rows]

    def list_published_for_class(self, class_id: str) -> list[dict]:
        """Published assignments linked to a class via a publish record or the legacy pointer.

        Each row carries ``class_deadline``, the deadline of that class's publish record.
        """
        rows = self.db.execute(
            "SELECT a.*, ac.deadline AS class_deadline, ac.published_at AS published_at "
            "FROM assignments a LEFT JOIN assignment_classes ac "
            "ON ac.assignment_id = a.id AND ac.class_id = ? "
            "WHERE a.status = ? AND (ac.id IS NOT NULL OR a.class_id = ?) "
            "ORDER BY a.created_at DESC",
            (class_id, ASSIGNMENT_PUBLISHED, class_id),
        ).fetchall()
        return [self._row(r) for r in rows]

    def set_status(self, assignment_id: str, status: str) -> None:
        self.db.execute(
            "UPDATE assignments SET status = ?, updated_at = ? WHERE id = ?",
            (status, _now(), assignment_id),
        )
        self.db.commit()

    def delete(self, assignment_id: str) -> None:
        self.db.execute("DELETE FROM assignments WHERE id = ?", (assignment_id,))


class QuestionStoreDB:
    def __init__(self, db) -> None:
        self.db = db

    def create_many(self, assignment_id: str, questions: list[dict]) -> list[Question]:
        """Insert questions in the given order, numbering them from 1."""
        created = []
        for i, q in enumerate(questions, 1):
            qtype = q.get("type") or "fill"
            question = Question(
                id=q.get("id") or _new_id(),
                assignment_id=assignment_id,
                type=qtype,
                content=q.get("content", ""),
                answer=str(q.get("answer", "") or ""),
                score=int(q.get("score") or 0),
                order_num=i,
                options=parse_options(qtype, q.get("options")),
            )
            self.db.execute(
                "INSERT INTO questions (id, assignment_id, type, content, options, answer, score, order_num) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (question.id, assignment_id, question.type, question.content,
                 dump_options(question.options), question.answer, question.score, question.order_num),
            )
            created.append(question)
        self.db.commit()
        return created

    def list_for_assignment(self, assignment_id: str) -> list[Question]:
        rows = self.db.execute(
            "SELECT * FROM questions WHERE assignment_id = ? ORDER BY order_num",
            (assignment_id,),
        ).fetchall()
        return [Question.from_row(r) for r in rows]

    def get(self, assignment_id: str, question_id: str) -> Question | None:
        row = self.db.execute(
            "SELECT * FROM questions WHERE assignment_id = ? AND id = ?",
            (assignment_id, question_id),
        ).fetchone()
        return Question.from_row(row) if row else None

    def delete_for_assignment(self, assignment_id: str) -> None:
        self.db.execute("DELETE FROM questions WHERE assignment_id = ?", (assignment_id,))


class AssignmentClassStoreDB:
    """Publish records linking an assignment to a class."""

    def __init__(self, db) -> None:
        self.db = db

    def get(self, assignment_id: str, class_id: str) -> dict | None:
        row = self.db.execute(
            "SELECT * FROM assignment_classes WHERE assignment_id = ? AND class_id = ?",
            (assignment_id, class_id),
        ).fetchone()
        return dict(row) if row else None

    def create(self, assignment_id: str, class_id: str, deadline: str | None) -> dict:
        record_id = _new_id()
        self.db.execute(
            "INSERT INTO assignment_classes (id, assignment_id, class_id, deadline, published_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (record_id, assignment_id, class_id, deadline, _now()),
        )
        self.db.commit()
        return self.get(assignment_id, class_id)

    def update_deadline(self, record_id: str, deadline: str | None) -> None:
        self.db.execute(
            "UPDATE assignment_classes SET deadline = ? WHERE id = ?", (deadline, record_id),
        )
        self.db.commit()

    def list_for_assignment(self, assignment_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT ac.*, c.name AS class_name FROM assignment_classes ac "
            "LEFT JOIN classes c ON c.id = ac.class_id "
            "WHERE ac.assignment_id = ? ORDER BY ac.published_at",
            (assignment_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_for_assignment(self, assignment_id: str) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) AS cnt FROM assignment_classes WHERE assignment_id = ?",
            (assignment_id,),
        ).fetchone()
        return row["cnt"]

    def delete_for_assignment(self, assignment_id: str) -> None:
        self.db.execute("DELETE FROM assignment_classes WHERE assignment_id = ?", (assignment_id,))

    def delete_for_class(self, class_id: str) -> None:
        self.db.execute("DELETE FROM assignment_classes WHERE class_id = ?", (class_id,))


# ── Submissions ────────────────────────────────────────────

class SubmissionStoreDB:
    def __init__(self, db) -> None:
        self.db = db

    @staticmethod
    def _row(row) -> dict:
        d = dict(row)
        d["answers"] = _loads(d.get("answers"), {})
        d["question_scores"] = _loads(d.get("question_scores"), {})
        d["question_feedback"] = _loads(d.get("question_feedback"), {})
        return d

    def get(self, submission_id: str) -> dict | None:
        row = self.db.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
        return self._row(row) if row else None

    def get_for(self, assignment_id: str, student_id: str) -> dict | None:
        row = self.db.execute(
            "SELECT * FROM submissions WHERE assignment_id = ? AND student_id = ?",
            (assignment_id, student_id),
        ).fetchone()
        return self._row(row) if row else None

    def create(self, assignment_id: str, student_id: str, student_name: str,
               answers: dict, code_content: str) -> dict:
        submission_id = _new_id()
        now = _now()
        self.db.execute(
            "INSERT INTO submissions (id, assignment_id, student_id, student_name, answers, "
            "code_content, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (submission_id, assignment_id, student_id, student_name,
             json.dumps(answers, ensure_ascii=False), code_content, SUBMISSION_SUBMITTED, now, now),
        )
        self.db.commit()
        return self.get(submission_id)

    def overwrite_answers(self, submission_id: str, student_name: str,
                          answers: dict, code_content: str) -> dict:
        self.db.execute(
            "UPDATE submissions SET student_name = ?, answers = ?, code_content = ?, updated_at = ? "
            "WHERE id = ?",
            (student_name, json.dumps(answers, ensure_ascii=False), code_content, _now(), submission_id),
        )
        self.db.commit()
        return self.get(submission_id)

    def save_grade(self, submission_id: str, total_score: int, ai_feedback: str,
                   question_scores: str | None = None,
                   question_feedback: str | None = None, status: str = "graded") -> None:
        """Persist a grading result. ``None`` map blobs leave the stored maps untouched."""
        sets = ["total_score = ?", "ai_feedback = ?", "status = ?", "updated_at = ?"]
        params: list = [total_score, ai_feedback, status, _now()]
        if question_scores is not None:
            sets.append("question_scores = ?")
            params.append(question_scores)
        if question_feedback is not None:
            sets.append("question_feedback = ?")
            params.append(question_feedback)
        params.append(submission_id)
        self.db.execute(f"UPDATE submissions SET {', '.join(sets)} WHERE id = ?", params)
        self.db.commit()

    def set_total_score(self, submission_id: str, score: int) -> None:
        self.db.execute(
            "UPDATE submissions SET total_score = ?, updated_at = ? WHERE id = ?",
            (score, _now(), submission_id),
        )
        self.db.commit()

    def set_teacher_feedback(self, submission_id: str, feedback: str) -> None:
        self.db.execute(
            "UPDATE submissions SET teacher_feedback = ?, updated_at = ? WHERE id = ?",
            (feedback, _now(), submission_id),
        )
        self.db.commit()

    def set_question_scores(self, submission_id: str, scores: dict, total_score: int) -> None:
        self.db.execute(
            "UPDATE submissions SET question_scores = ?, total_score = ?, updated_at = ? WHERE id = ?",
            (json.dumps(scores, ensure_ascii=False), total_score, _now(), submission_id),
        )
        self.db.commit()

    def set_question_feedback(self, submission_id: str, feedback: dict) -> None:
        self.db.execute(
            "UPDATE submissions SET question_feedback = ?, updated_at = ? WHERE id = ?",
            (json.dumps(feedback, ensure_ascii=False), _now(), submission_id),
        )
        self.db.commit()

    def list_for_assignment(self, assignment_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM submissions WHERE assignment_id = ? ORDER BY created_at",
            (assignment_id,),
        ).fetchall()
        return [self._row(r) for r in rows]

    def count(self, assignment_id: str, status: str = "") -> int:
        sql = "SELECT COUNT(*) AS cnt FROM submissions WHERE assignment_id = ?"
        params: list = [assignment_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        return self.db.execute(sql, params).fetchone()["cnt"]

    def delete_for_assignment(self, assignment_id: str) -> None:
        self.db.execute("DELETE FROM submissions WHERE assignment_id = ?", (assignment_id,))


# ── Feedback board ─────────────────────────────────────────

class FeedbackStoreDB:
    def __init__(self, db) -> None:
        self.db = db

    def create(self, type: str, title: str, content: str, anonymous_id: str) -> dict:
        now = _now()
        cur = self.db.execute(
            "INSERT INTO feedback (title, content, anonymous_id, type, status, like_count, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, 'open', 0, ?, ?)",
            (title, content, anonymous_id, type, now, now),
        )
        self.db.commit()
        return self.get(cur.lastrowid)

    def get(self, feedback_id: int) -> dict | None:
        row = self.db.execute("SELECT * FROM feedback WHERE id = ?", (feedback_id,)).fetchone()
        return dict(row) if row else None

    def list_filtered(self, type: str = "", status: str = "", search: str = "") -> list[dict]:
        clauses = []
        params: list = []
        if type:
            clauses.append("type = ?")
            params.append(type)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if search:
            clauses.append("(LOWER(title) LIKE ? OR LOWER(content) LIKE ?)")
            pattern = f"%{search.lower()}%"
            params.extend([pattern, pattern])
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        rows = self.db.execute(
            f"SELECT * FROM feedback {where}ORDER BY like_count DESC, created_at DESC, id DESC",
            params,
        ).fetchall()
        return [dict(r) for r in rows]

    def like(self, feedback_id: int) -> None:
        self.db.execute(
            "UPDATE feedback SET like_count = like_count + 1 WHERE id = ?", (feedback_id,),
        )
        self.db.commit()

    def update_status(self, feedback_id: int, status: str, responder_id: str) -> None:
        now = _now()
        self.db.execute(
            "UPDATE feedback SET status = ?, responded_by = ?, responded_at = ?, updated_at = ? "
            "WHERE id = ?",
            (status, responder_id, now, now, feedback_id),
        )
        self.db.commit()

    def respond(self, feedback_id: int, response: str, responder_id: str) -> None:
        now = _now()
        self.db.execute(
            "UPDATE feedback SET response = ?, responded_by = ?, responded_at = ?, updated_at = ? "
            "WHERE id = ?",
            (response, responder_id, now, now, feedback_id),
        )
        self.db.commit()

    def stats(self) -> dict:
        total_row = self.db.execute(
            "SELECT COUNT(*) AS total, COALESCE(SUM(like_count), 0) AS likes FROM feedback"
        ).fetchone()
        by_status = {
            r["status"]: r["cnt"]
            for r in self.db.execute(
                "SELECT status, COUNT(*) AS cnt FROM feedback GROUP BY status"
            ).fetchall()
        }
        by_type = {
            r["type"]: r["cnt"]
            for r in self.db.execute(
                "SELECT type, COUNT(*) AS cnt FROM feedback GROUP BY type"
            ).fetchall()
        }
        return {
            "total": total_row["total"],
            "total_likes": total_row["likes"],
            "by_status": by_status,
            "by_type": by_type,
        }

    def delete(self, feedback_id: int) -> None:
        self.db.execute("DELETE FROM feedback WHERE id = ?", (feedback_id,))
        self.db.commit()


# ── Chat ───────────────────────────────────────────────────

class ChatSessionStoreDB:
    """Chat sessions and their append-only message log."""

    def __init__(self, db) -> None:
        self.db = db

    def create(self, user_id: str, title: str, anonymous_id: str = "") -> dict:
        session_id = _new_id()
        now = _now()
        self.db.execute(
            "INSERT INTO chat_sessions (id, user_id, anonymous_id, title, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (session_id, user_id, anonymous_id, title, now, now),
        )
        self.db.commit()
        return self.get(session_id)

    def get(self, session_id: str) -> dict | None:
        row = self.db.execute("SELECT * FROM chat_sessions WHERE id = ?", (session_id,)).fetchone()
        return dict(row) if row else None

    def list_for_user(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT s.*, (SELECT COUNT(*) FROM chat_messages m WHERE m.session_id = s.id "
            "AND m.role != 'system') AS message_count "
            "FROM chat_sessions s WHERE s.user_id = ? ORDER BY s.updated_at DESC",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def touch(self, session_id: str) -> None:
        self.db.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE id = ?", (_now(), session_id),
        )
        self.db.commit()

    def add_message(self, session_id: str, role: str, content: str) -> dict:
        cur = self.db.execute(
            "INSERT INTO chat_messages (session_id, role, content, created_at) VALUES (?, ?, ?, ?)",
            (session_id, role, content, _now()),
        )
        self.db.commit()
        row = self.db.execute("SELECT * FROM chat_messages WHERE id = ?", (cur.lastrowid,)).fetchone()
        return dict(row)

    def messages(self, session_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY id", (session_id,),
        ).fetchall()
        return [dict(r) for r in rows]
