from typing import Dict, List

from bson import ObjectId
from flask import Blueprint, jsonify, request

from ..context import current_user, get_store
from ..errors import NotFoundError, ValidationError
from ..ledger import parse_object_id
from ..pricing import MAX_LINE_QUANTITY, validate_quantity
from ..serializers import serialize_cart

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def clear_cart(store, user_id) -> None:
    store.users.update_one({"_id": user_id}, {"$set": {"cart": []}})


def cart_response(store, cart_entries: List[Dict]):
    product_ids = [entry.get("product_id") for entry in cart_entries]
    products_by_id = {
        document["_id"]: document
        for document in store.products.find({"_id": {"$in": product_ids}})
    }
    return jsonify({"success": True, "cart": serialize_cart(cart_entries, products_by_id)})


def save_cart(store, user_id, cart_entries: List[Dict]):
    store.users.update_one({"_id": user_id}, {"$set": {"cart": cart_entries}})
    return cart_response(store, cart_entries)


def parse_cart_quantity(value) -> int:
    try:
        return validate_quantity(value)
    except ValidationError:
        raise ValidationError(f"Quantity must be between 1 and {MAX_LINE_QUANTITY}")


@cart_bp.route("", methods=["GET"])
def get_cart():
    user_document = current_user()
    return cart_response(get_store(), user_document.get("cart") or [])


@cart_bp.route("", methods=["POST"])
def add_to_cart():
    user_document = current_user()
    payload = request.get_json(silent=True) or {}
    store = get_store()

    product_id = parse_object_id(payload.get("productId"))
    if product_id is None or not store.products.find_one({"_id": product_id}):
        raise NotFoundError("Product not found")

    size = str(payload.get("size") or "").strip()
    color = str(payload.get("color") or "").strip()
    quantity = parse_cart_quantity(payload.get("quantity", 1))

    cart_entries = list(user_document.get("cart") or [])
    for entry in cart_entries:
        if (
            entry.get("product_id") == product_id
            and entry.get("size", "") == size
            and entry.get("color", "") == color
        ):
            entry["quantity"] = parse_cart_quantity(int(entry.get("quantity") or 0) + quantity)
            break
    else:
        cart_entries.append(
            {
                "_id": ObjectId(),
                "product_id": product_id,
                "size": size,
                "color": color,
                "quantity": quantity,
            }
        )

    return save_cart(store, user_document["_id"], cart_entries)


@cart_bp.route("/<item_id>", methods=["PUT"])
def update_cart_item(item_id: str):
    user_document = current_user()
    payload = request.get_json(silent=True) or {}
    quantity = parse_cart_quantity(payload.get("quantity"))

    cart_entries = list(user_document.get("cart") or [])
    target_id = parse_object_id(item_id)
    for entry in cart_entries:
        if target_id is not None and entry.get("_id") == target_id:
            entry["quantity"] = quantity
            break
    else:
        raise NotFoundError("Cart item not found")

    return save_cart(get_store(), user_document["_id"], cart_entries)


@cart_bp.route("/<item_id>", methods=["DELETE"])
def remove_cart_item(item_id: str):
    user_document = current_user()
    cart_entries = [
        entry for entry in user_document.get("cart") or [] if str(entry.get("_id")) != item_id
    ]
    return save_cart(get_store(), user_document["_id"], cart_entries)


@cart_bp.route("/clear", methods=["DELETE"])
def clear_cart_route():
    user_document = current_user()
    clear_cart(get_store(), user_document["_id"])
    return jsonify({"success": True, "cart": []})
