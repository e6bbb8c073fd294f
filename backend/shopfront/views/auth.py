from datetime import datetime
from typing import Dict

import bcrypt
import requests
from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, set_access_cookies, unset_jwt_cookies
from pymongo.errors import DuplicateKeyError

from ..context import current_user, get_store, is_valid_email, normalize_email
from ..errors import GatewayUnavailableError, UnauthorizedError, ValidationError
from ..serializers import serialize_cart, serialize_product_summary, serialize_user_profile

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
google_bp = Blueprint("googlelogin", __name__, url_prefix="/api/googlelogin")

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_ISSUERS = {"accounts.google.com", "https://accounts.google.com"}
MIN_PASSWORD_LENGTH = 6


def issue_session(user_document, status_code: int = 200):
    token = create_access_token(identity=str(user_document["_id"]))
    response = jsonify(
        {
            "success": True,
            "access_token": token,
            "user": serialize_user_profile(user_document),
        }
    )
    set_access_cookies(response, token)
    return response, status_code


@auth_bp.route("/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    name = str(payload.get("name", "")).strip()
    email = normalize_email(payload.get("email"))
    phone = str(payload.get("phone", "")).strip()
    password = str(payload.get("password", ""))

    if not name or not phone:
        raise ValidationError("Name and phone are required to create an account.")
    if not is_valid_email(email):
        raise ValidationError("A valid email is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )

    store = get_store()
    if store.users.find_one({"$or": [{"email": email}, {"phone": phone}]}):
        raise ValidationError("User already exists")

    user_document = {
        "name": name,
        "email": email,
        "phone": phone,
        "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
        "auth_type": "local",
        "role": "standard",
        "wishlist": [],
        "cart": [],
        "orders": [],
        "created_at": datetime.utcnow(),
    }
    try:
        insert_result = store.users.insert_one(user_document)
    except DuplicateKeyError:
        raise ValidationError("User already exists")
    user_document["_id"] = insert_result.inserted_id

    current_app.logger.info("Registered user %s", user_document["_id"])
    return issue_session(user_document, 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    identifier = str(payload.get("identifier") or payload.get("email") or "").strip()
    password = str(payload.get("password", ""))

    if not identifier or not password:
        raise ValidationError("Identifier and password are required.")

    query = {"email": normalize_email(identifier)} if "@" in identifier else {"phone": identifier}
    store = get_store()
    user = store.users.find_one(query)
    stored_hash = (user or {}).get("password")
    if not stored_hash:
        raise UnauthorizedError("Invalid credentials")
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    if not bcrypt.checkpw(password.encode("utf-8"), stored_hash):
        raise UnauthorizedError("Invalid credentials")

    store.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"last_login_at": datetime.utcnow()}},
    )
    return issue_session(user)


@auth_bp.route("/logout", methods=["POST"])
def logout():
    response = jsonify({"success": True, "message": "Logged out"})
    unset_jwt_cookies(response)
    return response


@auth_bp.route("/me", methods=["GET"])
def me():
    user_document = current_user()
    store = get_store()

    cart_entries = user_document.get("cart") or []
    product_ids = set(user_document.get("wishlist") or [])
    product_ids.update(entry.get("product_id") for entry in cart_entries)
    products_by_id: Dict = {
        document["_id"]: document
        for document in store.products.find({"_id": {"$in": list(product_ids)}})
    }

    profile = serialize_user_profile(user_document)
    profile["wishlist"] = [
        serialize_product_summary(products_by_id[product_id])
        for product_id in user_document.get("wishlist") or []
        if product_id in products_by_id
    ]
    profile["cart"] = serialize_cart(cart_entries, products_by_id)
    return jsonify({"success": True, "user": profile})


@auth_bp.route("/profile", methods=["PUT"])
def update_profile():
    user_document = current_user()
    payload = request.get_json(silent=True) or {}

    updates = {}
    for field in ("name", "phone", "avatar"):
        value = str(payload.get(field) or "").strip()
        if value:
            updates[field] = value

    store = get_store()
    if updates.get("phone") and store.users.find_one(
        {"phone": updates["phone"], "_id": {"$ne": user_document["_id"]}}
    ):
        raise ValidationError("Phone number is already in use.")

    if updates:
        store.users.update_one({"_id": user_document["_id"]}, {"$set": updates})
        user_document = store.users.find_one({"_id": user_document["_id"]})

    return jsonify({"success": True, "user": serialize_user_profile(user_document)})


def verify_google_id_token(id_token: str, client_id: str, timeout: float = 10.0) -> Dict[str, str]:
    """Validate a Google ID token server-side and return its identity claims."""
    if not id_token or not client_id:
        raise UnauthorizedError("Google login failed")

    try:
        response = requests.get(
            GOOGLE_TOKENINFO_URL, params={"id_token": id_token}, timeout=timeout
        )
    except requests.RequestException as exc:
        current_app.logger.error("Google token verification unreachable: %s", exc)
        raise GatewayUnavailableError("Google sign-in is unavailable. Please retry.")

    if response.status_code != 200:
        current_app.logger.warning("Google token rejected: %s", response.text)
        raise UnauthorizedError("Google login failed")

    claims = response.json()
    email_verified = str(claims.get("email_verified", "")).lower() == "true"
    if (
        claims.get("aud") != client_id
        or claims.get("iss") not in GOOGLE_ISSUERS
        or not email_verified
        or not claims.get("email")
    ):
        current_app.logger.warning("Google token failed claim checks for %s", claims.get("email"))
        raise UnauthorizedError("Google login failed")

    return {
        "google_id": str(claims.get("sub") or ""),
        "email": normalize_email(claims.get("email")),
        "name": str(claims.get("name") or "").strip(),
        "avatar": str(claims.get("picture") or "").strip(),
    }


@google_bp.route("/googlelogin", methods=["POST"])
def google_login():
    payload = request.get_json(silent=True) or {}
    identity = verify_google_id_token(
        str(payload.get("token") or ""),
        current_app.config.get("GOOGLE_CLIENT_ID", ""),
        current_app.config.get("HTTP_TIMEOUT", 10.0),
    )

    store = get_store()
    user_document = store.users.find_one({"email": identity["email"]})
    if not user_document:
        user_document = {
            "name": identity["name"] or identity["email"].split("@")[0],
            "email": identity["email"],
            "avatar": identity["avatar"],
            "auth_type": "google",
            "role": "standard",
            "wishlist": [],
            "cart": [],
            "orders": [],
            "created_at": datetime.utcnow(),
        }
        if identity["google_id"]:
            user_document["google_id"] = identity["google_id"]
        user_document["_id"] = store.users.insert_one(user_document).inserted_id
        current_app.logger.info("Created Google account %s", user_document["_id"])
    elif not user_document.get("google_id") and identity["google_id"]:
        store.users.update_one(
            {"_id": user_document["_id"]},
            {"$set": {"google_id": identity["google_id"]}},
        )

    return issue_session(user_document)
