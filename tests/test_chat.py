"""Tests for chat sessions."""

from __future__ import annotations

import pytest

from agents.chat_agent import CHAT_SYSTEM_PROMPT
from chat_service import ChatService
from errors import Forbidden, NotFound, ValidationError


class TestAsk:
    def test_new_session(self, db, student, fake_llm):
        fake_llm.reply("Use a for loop.")
        svc = ChatService.from_db(db)
        result = svc.ask("", student["id"], "How do I iterate over a list in Python? " * 3)
        assert result["answer"] == "Use a for loop."

        session = svc.sessions.get(result["session_id"])
        assert len(session["title"]) == 50
        messages = svc.sessions.messages(result["session_id"])
        assert [m["role"] for m in messages] == ["system", "user", "assistant"]
        assert messages[0]["content"] == CHAT_SYSTEM_PROMPT

    def test_full_history_is_sent(self, db, student, fake_llm):
        fake_llm.reply("first answer", "second answer")
        svc = ChatService.from_db(db)
        sid = svc.ask("", student["id"], "What is a list?")["session_id"]
        svc.ask(sid, student["id"], "And a tuple?")
        sent = fake_llm.last_kwargs["messages"]
        assert [m["role"] for m in sent] == ["system", "user", "assistant", "user"]
        assert sent[-1]["content"] == "And a tuple?"

    def test_other_users_session_forbidden(self, db, student, teacher):
        svc = ChatService.from_db(db)
        sid = svc.ask("", student["id"], "hello")["session_id"]
        with pytest.raises(Forbidden):
            svc.ask(sid, teacher["id"], "hijack")

    def test_unknown_session(self, db, student):
        with pytest.raises(NotFound):
            ChatService.from_db(db).ask("missing", student["id"], "hi")

    def test_empty_question(self, db, student):
        with pytest.raises(ValidationError):
            ChatService.from_db(db).ask("", student["id"], "   ")

    def test_model_failure_is_502(self, student_client, fake_llm):
        fake_llm.fail(ConnectionError("down"))
        resp = student_client.post("/api/chat", json={"question": "hi"})
        assert resp.status_code == 502
        assert resp.get_json()["error"] == "language model call failed"


class TestAnonymousSessions:
    def test_new_session_gets_a_token(self, db):
        result = ChatService.from_db(db).ask("", "", "What is a dict?")
        assert result["anonymous_id"]
        assert ChatService.from_db(db).sessions.get(result["session_id"])["user_id"] == ""

    def test_continue_with_token(self, db, fake_llm):
        fake_llm.reply("one", "two")
        svc = ChatService.from_db(db)
        first = svc.ask("", "", "hi")
        second = svc.ask(first["session_id"], "", "again", anonymous_id=first["anonymous_id"])
        assert second["answer"] == "two"
        assert len(svc.sessions.messages(first["session_id"])) == 5

    def test_other_anonymous_caller_forbidden(self, db):
        svc = ChatService.from_db(db)
        first = svc.ask("", "", "hi")
        with pytest.raises(Forbidden):
            svc.ask(first["session_id"], "", "hijack")
        with pytest.raises(Forbidden):
            svc.ask(first["session_id"], "", "hijack", anonymous_id="guess")

    def test_logged_in_user_cannot_take_over(self, db, student):
        svc = ChatService.from_db(db)
        first = svc.ask("", "", "hi")
        with pytest.raises(Forbidden):
            svc.ask(first["session_id"], student["id"], "mine now")

    def test_caller_supplied_token_is_kept(self, db):
        result = ChatService.from_db(db).ask("", "", "hi", anonymous_id="browser-123")
        assert result["anonymous_id"] == "browser-123"

    def test_route_with_header_token(self, client):
        first = client.post("/api/chat", json={"question": "hi"}).get_json()
        sid, token = first["session_id"], first["anonymous_id"]
        resp = client.post("/api/chat", json={"session_id": sid, "question": "more"},
                           headers={"X-Anonymous-ID": token})
        assert resp.status_code == 200
        stranger = client.post("/api/chat", json={"session_id": sid, "question": "more"})
        assert stranger.status_code == 403

    def test_logged_in_reply_has_no_token(self, student_client):
        body = student_client.post("/api/chat", json={"question": "hi"}).get_json()
        assert "anonymous_id" not in body


class TestHistory:
    def test_owner_and_class_teacher_can_read(self, student_client, teacher_client, classroom):
        sid = student_client.post("/api/chat", json={"question": "hi"}).get_json()["session_id"]
        own = student_client.get(f"/api/history?session_id={sid}").get_json()
        assert [m["role"] for m in own["messages"]] == ["system", "user", "assistant"]
        assert teacher_client.get(f"/api/history?session_id={sid}").status_code == 200

    def test_unrelated_teacher_cannot_read(self, student_client, other_teacher_client, classroom):
        sid = student_client.post("/api/chat", json={"question": "hi"}).get_json()["session_id"]
        assert other_teacher_client.get(f"/api/history?session_id={sid}").status_code == 403

    def test_admin_can_read(self, student_client, admin_client):
        sid = student_client.post("/api/chat", json={"question": "hi"}).get_json()["session_id"]
        assert admin_client.get(f"/api/history?session_id={sid}").status_code == 200

    def test_session_id_required(self, student_client):
        assert student_client.get("/api/history").status_code == 400

    def test_sessions_list(self, student_client):
        student_client.post("/api/chat", json={"question": "first"})
        student_client.post("/api/chat", json={"question": "second"})
        sessions = student_client.get("/api/sessions").get_json()["sessions"]
        assert {s["title"] for s in sessions} == {"first", "second"}
        assert all(s["message_count"] == 2 for s in sessions)

    def test_teacher_lists_student_sessions(self, student_client, teacher_client, student, classroom):
        student_client.post("/api/chat", json={"question": "hi"})
        body = teacher_client.get(f"/api/students/{student['id']}/sessions").get_json()
        assert len(body["sessions"]) == 1
