"""
Test fixtures for the classroom assistant.

Provides app, client, db, seeded users, logged-in clients and a fake
language model. Grading runs inline (TASKS_EAGER) with no delay.
"""

from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

PASSWORD = "secret123"


class FakeLLM:
    """Stands in for ai_resilience.resilient_llm_call.

    Replies are served in order; once they run out the default reply is used.
    """

    def __init__(self):
        self.replies: list[str] = []
        self.default = "{}"
        self.error: Exception | None = None
        self.mock = MagicMock(side_effect=self._respond)

    def reply(self, *texts: str) -> None:
        self.replies.extend(texts)

    def fail(self, exc: Exception) -> None:
        self.error = exc

    def _respond(self, settings, prompt, system="", messages=None):
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else self.default
        return text, {
            "provider": settings.provider,
            "model": settings.model,
            "latency_ms": 1,
            "input_chars": len(prompt),
            "output_chars": len(text),
        }

    @property
    def call_count(self) -> int:
        return self.mock.call_count

    @property
    def last_kwargs(self) -> dict:
        args, kwargs = self.mock.call_args
        return {"prompt": args[1] if len(args) > 1 else "", **kwargs}


@pytest.fixture(autouse=True)
def reset_circuit_breaker():
    from ai_resilience import get_circuit_breaker
    get_circuit_breaker().reset()
    yield
    get_circuit_breaker().reset()


@pytest.fixture(autouse=True)
def fake_llm():
    """Every test talks to the fake model; no network calls."""
    fake = FakeLLM()
    with patch("ai_resilience.resilient_llm_call", fake.mock):
        yield fake


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "test.db"),
        "SECRET_KEY": "test-secret-key",
        "TASKS_EAGER": True,
        "GRADING_DELAY_SECONDS": 0,
        "LLM_API_KEY": "test-key",
        "LOG_LEVEL": "WARNING",
    })

    with app.app_context():
        from database import init_db, run_migrations
        init_db()
        run_migrations()

    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def db(app):
    """Direct database access for store and service tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


def make_user(app, username: str, role: str, display_name: str = "") -> dict:
    from database import get_db
    from user_service import UserService

    with app.app_context():
        return UserService.from_db(get_db()).register(username, PASSWORD, display_name, role)


def login(app, username: str):
    client = app.test_client()
    resp = client.post("/api/login", json={"username": username, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def user_factory(app):
    """Create extra accounts: ``user_factory("bob", "student", "Bob")``."""
    def _make(username: str, role: str = "student", display_name: str = "") -> dict:
        return make_user(app, username, role, display_name)
    return _make


@pytest.fixture
def login_as(app):
    return lambda username: login(app, username)


@pytest.fixture
def teacher(app):
    return make_user(app, "teacher1", "teacher", "Ms Lin")


@pytest.fixture
def other_teacher(app):
    return make_user(app, "teacher2", "teacher", "Mr Wu")


@pytest.fixture
def student(app):
    return make_user(app, "student1", "student", "Alice")


@pytest.fixture
def admin(app):
    return make_user(app, "admin1", "admin", "Root")


@pytest.fixture
def teacher_client(app, teacher):
    return login(app, teacher["username"])


@pytest.fixture
def student_client(app, student):
    return login(app, student["username"])


@pytest.fixture
def other_teacher_client(app, other_teacher):
    return login(app, other_teacher["username"])


@pytest.fixture
def admin_client(app, admin):
    return login(app, admin["username"])


@pytest.fixture
def classroom(app, teacher, student):
    """A class owned by ``teacher`` that ``student`` has joined."""
    from class_service import ClassService
    from database import get_db

    with app.app_context():
        svc = ClassService.from_db(get_db())
        cls = svc.create_class("Python 101", teacher["id"])
        svc.join(student["id"], cls["code"])
        return cls


def tomorrow() -> str:
    return (date.today() + timedelta(days=1)).isoformat()


SAMPLE_QUESTIONS = [
    {"id": "q1", "type": "choice", "content": "Which keyword defines a function?",
     "options": ["A. def", "B. func", "C. fn"], "answer": "A", "score": 10},
    {"id": "q2", "type": "fill", "content": "The built-in that prints text is ____.",
     "answer": "print", "score": 5},
]


@pytest.fixture
def assignment(app, teacher):
    """A draft assignment with two questions (q1 worth 10, q2 worth 5)."""
    from assignment_service import AssignmentService
    from database import get_db

    with app.app_context():
        return AssignmentService.from_db(get_db()).create_manual(
            teacher["id"], "Functions", "Basics of functions", "mixed", SAMPLE_QUESTIONS,
        )


@pytest.fixture
def published(app, teacher, classroom, assignment):
    """``assignment`` published to ``classroom`` with a deadline of tomorrow."""
    from assignment_service import AssignmentService
    from database import get_db

    with app.app_context():
        AssignmentService.from_db(get_db()).publish(assignment["id"], classroom["id"], tomorrow(), teacher)
    return assignment
