from flask import Blueprint, jsonify

from ..context import current_user, get_store
from ..errors import NotFoundError, ValidationError
from ..ledger import parse_object_id
from ..serializers import serialize_product_summary

wishlist_bp = Blueprint("wishlist", __name__, url_prefix="/api/wishlist")


def wishlist_payload(store, user_id, **extra):
    user_document = store.users.find_one({"_id": user_id}, {"wishlist": 1}) or {}
    product_ids = list(user_document.get("wishlist") or [])
    products_by_id = {
        document["_id"]: document
        for document in store.products.find({"_id": {"$in": product_ids}})
    }
    wishlist = [
        serialize_product_summary(products_by_id[product_id])
        for product_id in product_ids
        if product_id in products_by_id
    ]
    return jsonify({"success": True, "wishlist": wishlist, **extra})


def require_product(product_id: str):
    object_id = parse_object_id(product_id)
    if object_id is None or not get_store().products.find_one({"_id": object_id}):
        raise NotFoundError("Product not found")
    return object_id


@wishlist_bp.route("", methods=["GET"])
def get_wishlist():
    user_document = current_user()
    return wishlist_payload(get_store(), user_document["_id"])


@wishlist_bp.route("/<product_id>", methods=["POST"])
def add_to_wishlist(product_id: str):
    user_document = current_user()
    object_id = require_product(product_id)
    if object_id in (user_document.get("wishlist") or []):
        raise ValidationError("Product already in wishlist")

    store = get_store()
    store.users.update_one({"_id": user_document["_id"]}, {"$addToSet": {"wishlist": object_id}})
    return wishlist_payload(store, user_document["_id"])


@wishlist_bp.route("/<product_id>", methods=["DELETE"])
def remove_from_wishlist(product_id: str):
    user_document = current_user()
    store = get_store()
    object_id = parse_object_id(product_id)
    if object_id is not None:
        store.users.update_one({"_id": user_document["_id"]}, {"$pull": {"wishlist": object_id}})
    return wishlist_payload(store, user_document["_id"])


@wishlist_bp.route("/toggle/<product_id>", methods=["POST"])
def toggle_wishlist(product_id: str):
    user_document = current_user()
    object_id = require_product(product_id)
    store = get_store()

    added = object_id not in (user_document.get("wishlist") or [])
    operator = "$addToSet" if added else "$pull"
    store.users.update_one({"_id": user_document["_id"]}, {operator: {"wishlist": object_id}})
    return wishlist_payload(store, user_document["_id"], added=added)
