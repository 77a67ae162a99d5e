"""Identity store operations: registration, credential check, password reset."""

from __future__ import annotations

import logging

from werkzeug.security import check_password_hash, generate_password_hash

from db_stores import UserStoreDB
from errors import Conflict, Forbidden, NotFound, ValidationError
from models import ROLE_ADMIN, ROLE_STUDENT, ROLES

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MAX_USERNAME_LENGTH = 64


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"password must be at least {MIN_PASSWORD_LENGTH} characters"
    return None


class UserService:
    def __init__(self, users: UserStoreDB) -> None:
        self.users = users

    @classmethod
    def from_db(cls, db) -> "UserService":
        return cls(UserStoreDB(db))

    def register(self, username: str, password: str, display_name: str = "",
                 role: str = ROLE_STUDENT) -> dict:
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("username and password are required")
        if len(username) > MAX_USERNAME_LENGTH:
            raise ValidationError(f"username must be at most {MAX_USERNAME_LENGTH} characters")
        if role not in ROLES:
            raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
        pw_error = _validate_password(password)
        if pw_error:
            raise ValidationError(pw_error)
        if self.users.username_taken(username):
            raise Conflict("username already exists")

        user = self.users.create(
            username=username,
            password_hash=generate_password_hash(password),
            display_name=(display_name or "").strip() or username,
            role=role,
        )
        logger.info("Registered %s user %s", role, user["id"])
        return user

    def authenticate(self, username: str, password: str) -> dict | None:
        """Return the user when the credentials match, else None."""
        row = self.users.get_with_password((username or "").strip())
        if not row or not password or not check_password_hash(row["password_hash"], password):
            return None
        row.pop("password_hash", None)
        return row

    def get(self, user_id: str) -> dict:
        user = self.users.get(user_id)
        if not user:
            raise NotFound("user not found")
        return user

    def find_by_username(self, username: str) -> dict:
        user = self.users.get_by_username((username or "").strip())
        if not user:
            raise NotFound("user not found")
        return user

    def reset_password(self, actor: dict, user_id: str, new_password: str,
                       old_password: str = "") -> None:
        """Users reset their own password (old password required); admins reset anyone's."""
        target = self.get(user_id)
        if actor["role"] != ROLE_ADMIN:
            if actor["id"] != target["id"]:
                raise Forbidden("you may only reset your own password")
            current_hash = self.users.password_hash(target["id"])
            if not old_password or not current_hash or not check_password_hash(current_hash, old_password):
                raise ValidationError("current password is incorrect")
        pw_error = _validate_password(new_password or "")
        if pw_error:
            raise ValidationError(pw_error)
        self.users.set_password_hash(target["id"], generate_password_hash(new_password))
