"""
User Authentication — Flask-Login request loader and account routes.

Identity travels in a cookie pair (user_id, user_role) set at login, or in
the X-User-ID / X-User-Role headers; the cookie wins when both are present.
Uses werkzeug.security for password hashing (see user_service).
"""

from __future__ import annotations

import click
from flask import Blueprint, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required

from audit import log_event
from database import get_db
from db_stores import UserStoreDB
from errors import Forbidden, ValidationError
from extensions import limiter
from helpers import json_body
from models import ROLE_ADMIN, ROLE_STUDENT, ROLE_TEACHER, STAFF_ROLES
from user_service import UserService

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()

IDENTITY_COOKIES = ("user_id", "user_role", "user_name")


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: str, username: str, display_name: str, role: str = ROLE_STUDENT,
                 class_id: str | None = None):
        self.id = id
        self.username = username
        self.display_name = display_name
        self.role = role
        self.class_id = class_id

    @property
    def is_teacher(self):
        return self.role == ROLE_TEACHER

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    @classmethod
    def from_row(cls, row: dict) -> "User":
        return cls(row["id"], row["username"], row["display_name"], row["role"], row.get("class_id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "role": self.role,
            "class_id": self.class_id,
        }


def _claimed_identity(req) -> tuple[str, str]:
    """(user_id, role) from the cookie pair, else from the headers."""
    cookie_id = req.cookies.get("user_id", "")
    if cookie_id:
        return cookie_id, req.cookies.get("user_role", "")
    return req.headers.get("X-User-ID", ""), req.headers.get("X-User-Role", "")


@login_manager.request_loader
def load_user_from_request(req):
    user_id, claimed_role = _claimed_identity(req)
    if not user_id:
        return None
    row = UserStoreDB(get_db()).get(user_id)
    if not row:
        return None
    if claimed_role and claimed_role != row["role"]:
        current_app.logger.warning("Role claim %r does not match user %s", claimed_role, user_id)
        return None
    return User.from_row(row)


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({"error": "login required"}), 401


def _set_identity_cookies(response, user: dict) -> None:
    max_age = current_app.config.get("COOKIE_MAX_AGE", 7 * 86400)
    secure = current_app.config.get("COOKIE_SECURE", False)
    values = {"user_id": user["id"], "user_role": user["role"], "user_name": user["display_name"]}
    for name, value in values.items():
        response.set_cookie(name, value, max_age=max_age, httponly=True,
                            samesite="Lax", secure=secure)


@auth_bp.route("/api/register", methods=["POST"])
@limiter.limit("10 per hour")
def register():
    data = json_body()
    role = data.get("role") or ROLE_STUDENT
    if role == ROLE_ADMIN and not (current_user.is_authenticated and current_user.is_admin):
        raise Forbidden("only an admin can create admin accounts")
    user = UserService.from_db(get_db()).register(
        username=data.get("username", ""),
        password=data.get("password", ""),
        display_name=data.get("display_name") or data.get("name", ""),
        role=role,
    )
    log_event("register", user["id"], f"username={user['username']} role={role}")
    return jsonify({"user": user}), 201


@auth_bp.route("/api/login", methods=["POST"])
@limiter.limit("10 per 15 minutes")
def login():
    data = json_body()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        raise ValidationError("username and password are required")

    user = UserService.from_db(get_db()).authenticate(username, password)
    if not user:
        log_event("login_failed", None, f"username={username}")
        return jsonify({"error": "invalid username or password"}), 401

    log_event("login_success", user["id"])
    response = jsonify({"user": user})
    _set_identity_cookies(response, user)
    return response


@auth_bp.route("/api/logout", methods=["POST"])
def logout():
    uid = current_user.id if current_user.is_authenticated else None
    log_event("logout", uid)
    response = jsonify({"message": "logged out"})
    for name in IDENTITY_COOKIES:
        response.delete_cookie(name)
    return response


@auth_bp.route("/api/users/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})


@auth_bp.route("/api/users/find")
@login_required
def find_user():
    if not current_user.is_staff:
        raise Forbidden("only teachers can look up users")
    username = request.args.get("username", "")
    if not username:
        raise ValidationError("username is required")
    user = UserService.from_db(get_db()).find_by_username(username)
    return jsonify({"user": user})


@auth_bp.route("/api/users/reset-password", methods=["POST"])
@login_required
@limiter.limit("5 per hour")
def reset_password():
    data = json_body()
    target_id = data.get("user_id") or current_user.id
    UserService.from_db(get_db()).reset_password(
        actor=current_user.to_dict(),
        user_id=target_id,
        new_password=data.get("new_password", ""),
        old_password=data.get("old_password", ""),
    )
    log_event("password_reset", current_user.id, f"target={target_id}")
    return jsonify({"message": "password updated"})


def register_commands(app) -> None:
    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("password")
    @click.option("--role", type=click.Choice([ROLE_ADMIN, ROLE_TEACHER, ROLE_STUDENT]),
                  default=ROLE_ADMIN, show_default=True)
    @click.option("--name", "display_name", default="")
    def create_user(username, password, role, display_name):
        """Create an account from the command line (the way to bootstrap an admin)."""
        from database import init_db, run_migrations
        init_db()
        run_migrations()
        user = UserService.from_db(get_db()).register(username, password, display_name, role)
        click.echo(f"created {user['role']} {user['username']} ({user['id']})")
