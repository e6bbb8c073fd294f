import hmac
import re
from typing import Optional

from flask import current_app, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from .errors import ForbiddenError, UnauthorizedError
from .ledger import parse_object_id

STORE_EXTENSION = "shopfront.store"
GATEWAY_EXTENSION = "shopfront.gateway"

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def get_store():
    return current_app.extensions[STORE_EXTENSION]


def get_gateway():
    return current_app.extensions[GATEWAY_EXTENSION]


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def current_user(optional: bool = False):
    """Load the user behind the request's JWT (header or cookie)."""
    if verify_jwt_in_request(optional=optional) is None and optional:
        return None

    user_id = parse_object_id(get_jwt_identity())
    user_document = (
        get_store().users.find_one({"_id": user_id}, {"password": 0}) if user_id else None
    )
    if not user_document:
        if optional:
            return None
        raise UnauthorizedError("User not found")
    return user_document


def has_admin_secret() -> bool:
    configured = str(current_app.config.get("ADMIN_SECRET") or "")
    provided = request.headers.get("X-Admin-Secret", "")
    if not configured or not provided:
        return False
    return hmac.compare_digest(configured.encode("utf-8"), provided.encode("utf-8"))


def require_admin():
    if has_admin_secret():
        return None

    user_document = current_user(optional=True)
    if user_document and str(user_document.get("role", "")).lower() == "admin":
        return user_document
    if user_document:
        raise ForbiddenError("You need additional permissions to perform this action.")
    raise UnauthorizedError("Unauthorized - Admin secret missing or invalid")
