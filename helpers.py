"""
Shared helpers used across blueprints.

Role decorators, request-body parsing, and deadline parsing.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time
from functools import wraps
from typing import Any

from flask import request
from flask_login import current_user

from errors import AuthenticationRequired, Forbidden, ValidationError
from models import ROLE_STUDENT, STAFF_ROLES

DEADLINE_FORMAT = "%Y-%m-%d"


def current_user_id() -> str:
    """Return the current authenticated user's ID, or '' for anonymous callers."""
    if current_user.is_authenticated:
        return current_user.id
    return ""


def current_actor() -> dict:
    """The authenticated caller as a plain dict, for passing into services."""
    if not current_user.is_authenticated:
        raise AuthenticationRequired()
    return current_user.to_dict()


def roles_required(*roles: str) -> Callable:
    """Decorator that requires an authenticated user holding one of ``roles``."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated(*args: Any, **kwargs: Any) -> Any:
            if not current_user.is_authenticated:
                raise AuthenticationRequired()
            if getattr(current_user, "role", "") not in roles:
                raise Forbidden()
            return f(*args, **kwargs)
        return decorated
    return decorator


def teacher_required(f: Callable) -> Callable:
    """Decorator that requires user to have teacher or admin role."""
    return roles_required(*STAFF_ROLES)(f)


def student_required(f: Callable) -> Callable:
    return roles_required(ROLE_STUDENT)(f)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def parse_deadline(value: str | None, today: date | None = None) -> datetime:
    """Parse a ``YYYY-MM-DD`` deadline into 23:59:59 of that day.

    The date must be today or later (date granularity).
    """
    if not value:
        raise ValidationError("deadline is required")
    try:
        day = datetime.strptime(str(value).strip(), DEADLINE_FORMAT).date()
    except ValueError:
        raise ValidationError("deadline must be a date in YYYY-MM-DD format") from None
    if day < (today or date.today()):
        raise ValidationError("deadline cannot be in the past")
    return datetime.combine(day, time(23, 59, 59))
