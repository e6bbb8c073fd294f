from flask import Blueprint, current_app, jsonify, request

from ..context import current_user, get_store
from ..ledger import OrderLedger
from ..orders import cancel_order, get_order_for_user, place_order
from ..serializers import serialize_order

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["GET"])
def list_orders():
    user_document = current_user()
    order_documents = OrderLedger(get_store()).find_for_user(user_document["_id"])
    return jsonify(
        {"success": True, "orders": [serialize_order(document) for document in order_documents]}
    )


@orders_bp.route("/<order_id>", methods=["GET"])
def get_order(order_id: str):
    user_document = current_user()
    order_document = get_order_for_user(get_store(), order_id, user_document["_id"])
    return jsonify({"success": True, "order": serialize_order(order_document)})


@orders_bp.route("", methods=["POST"])
def create_order():
    user_document = current_user()
    payload = request.get_json(silent=True) or {}
    order_document = place_order(
        get_store(), user_document, payload, current_app.config["SHOP_CURRENCY"]
    )
    return jsonify({"success": True, "order": serialize_order(order_document)}), 201


@orders_bp.route("/<order_id>/cancel", methods=["PUT"])
def cancel(order_id: str):
    user_document = current_user()
    order_document = cancel_order(get_store(), order_id, user_document["_id"])
    return jsonify({"success": True, "order": serialize_order(order_document)})
