"""Chat sessions with the Q&A assistant."""

from __future__ import annotations

import logging
import secrets

from agents.chat_agent import CHAT_SYSTEM_PROMPT, ChatAgent
from db_stores import ChatSessionStoreDB, ClassStoreDB, UserStoreDB
from errors import Forbidden, NotFound, ValidationError
from models import ROLE_ADMIN, ROLE_STUDENT, ROLE_TEACHER

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50


class ChatService:
    def __init__(self, sessions: ChatSessionStoreDB, users: UserStoreDB, classes: ClassStoreDB,
                 agent: ChatAgent | None = None) -> None:
        self.sessions = sessions
        self.users = users
        self.classes = classes
        self.agent = agent or ChatAgent()

    @classmethod
    def from_db(cls, db) -> "ChatService":
        return cls(ChatSessionStoreDB(db), UserStoreDB(db), ClassStoreDB(db))

    def ask(self, session_id: str, user_id: str, question: str, anonymous_id: str = "") -> dict:
        """Append a question to a session (new if none given) and get the reply.

        Returns ``{"session_id", "answer"}``. The user's message is kept even
        when the model call fails. Sessions started without a login are bound
        to a caller token; it is returned as ``anonymous_id`` and must be sent
        back to continue the session.
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("question is required")

        if session_id:
            session = self.sessions.get(session_id)
            if not session:
                raise NotFound("session not found")
            if not self._owns(session, user_id, anonymous_id):
                raise Forbidden("this session belongs to another user")
        else:
            if not user_id:
                anonymous_id = anonymous_id or secrets.token_urlsafe(16)
            session = self.sessions.create(
                user_id or "", question[:TITLE_LENGTH], "" if user_id else anonymous_id,
            )
            self.sessions.add_message(session["id"], "system", CHAT_SYSTEM_PROMPT)
            session_id = session["id"]

        self.sessions.add_message(session_id, "user", question)
        history = self.sessions.messages(session_id)
        answer = self.agent.respond(history)
        self.sessions.add_message(session_id, "assistant", answer)
        self.sessions.touch(session_id)
        result = {"session_id": session_id, "answer": answer}
        if not session["user_id"]:
            result["anonymous_id"] = session["anonymous_id"]
        return result

    @staticmethod
    def _owns(session: dict, user_id: str, anonymous_id: str) -> bool:
        if session["user_id"]:
            return session["user_id"] == user_id
        return bool(anonymous_id) and session["anonymous_id"] == anonymous_id

    def _can_view(self, owner_id: str, viewer: dict) -> bool:
        if viewer["role"] == ROLE_ADMIN or (owner_id and owner_id == viewer["id"]):
            return True
        if viewer["role"] != ROLE_TEACHER:
            return False
        owner = self.users.get(owner_id) if owner_id else None
        if not owner or owner["role"] != ROLE_STUDENT or not owner["class_id"]:
            return False
        cls = self.classes.get(owner["class_id"])
        return bool(cls) and cls["teacher_id"] == viewer["id"]

    def history(self, session_id: str, viewer: dict) -> list[dict]:
        session = self.sessions.get(session_id)
        if not session:
            raise NotFound("session not found")
        if not self._can_view(session["user_id"], viewer):
            raise Forbidden("you cannot view this session")
        return self.sessions.messages(session_id)

    def sessions_for(self, user_id: str) -> list[dict]:
        return self.sessions.list_for_user(user_id)

    def student_sessions(self, student_id: str, viewer: dict) -> list[dict]:
        student = self.users.get(student_id)
        if not student or student["role"] != ROLE_STUDENT:
            raise NotFound("student not found")
        if not self._can_view(student_id, viewer):
            raise Forbidden("student is not in one of your classes")
        return self.sessions.list_for_user(student_id)
