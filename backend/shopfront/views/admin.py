import math
import re
from typing import Dict

from flask import Blueprint, jsonify, request

from ..context import get_store, has_admin_secret, require_admin
from ..errors import UnauthorizedError
from ..ledger import PAYMENT_PAID, OrderLedger, parse_object_id
from ..orders import cancel_order, update_order_status
from ..serializers import money, serialize_order, stringify_id
from .catalog import safe_positive_int

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

ADMIN_PAGE_SIZE = 12
ADDRESS_SEARCH_FIELDS = (
    "address.email",
    "address.phone",
    "address.first_name",
    "address.last_name",
)


@admin_bp.before_request
def guard_admin_routes():
    require_admin()


def serialize_admin_order(order_document, users_by_id: Dict):
    serialized = serialize_order(order_document, include_user=True)
    owner = users_by_id.get(order_document.get("user_id")) or {}
    serialized["customer"] = {
        "id": stringify_id(owner.get("_id")),
        "name": owner.get("name", "") or "",
        "email": owner.get("email", "") or "",
        "phone": owner.get("phone", "") or "",
    }
    return serialized


def load_owners(order_documents) -> Dict:
    user_ids = list({document.get("user_id") for document in order_documents})
    return {
        user["_id"]: user
        for user in get_store().users.find(
            {"_id": {"$in": user_ids}}, {"name": 1, "email": 1, "phone": 1}
        )
    }


@admin_bp.route("/verify-secret", methods=["GET"])
def verify_secret():
    if not has_admin_secret():
        raise UnauthorizedError("Invalid admin secret")
    return jsonify({"success": True})


@admin_bp.route("/orders", methods=["GET"])
def list_orders():
    page = safe_positive_int(request.args.get("page"), 1)
    limit = safe_positive_int(request.args.get("limit"), ADMIN_PAGE_SIZE)
    query: Dict = {}

    if request.args.get("status"):
        query["order_status"] = request.args["status"]
    if request.args.get("paymentStatus"):
        query["payment_status"] = request.args["paymentStatus"]

    search_term = str(request.args.get("q") or "").strip()
    if search_term:
        pattern = {"$regex": re.escape(search_term), "$options": "i"}
        clauses = [{field: pattern} for field in ADDRESS_SEARCH_FIELDS]
        object_id = parse_object_id(search_term) if len(search_term) == 24 else None
        if object_id is not None:
            clauses.append({"_id": object_id})
        query["$or"] = clauses

    orders = get_store().orders
    order_documents = list(
        orders.find(query)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    total = orders.count_documents(query)
    owners = load_owners(order_documents)

    return jsonify(
        {
            "success": True,
            "items": [serialize_admin_order(document, owners) for document in order_documents],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }
    )


@admin_bp.route("/orders/<order_id>", methods=["GET"])
def get_order(order_id: str):
    order_document = OrderLedger(get_store()).get(order_id)
    return jsonify(
        {
            "success": True,
            "order": serialize_admin_order(order_document, load_owners([order_document])),
        }
    )


@admin_bp.route("/orders/<order_id>/status", methods=["PUT"])
def update_status(order_id: str):
    payload = request.get_json(silent=True) or {}
    order_document = update_order_status(
        get_store(),
        order_id,
        order_status=payload.get("orderStatus") or None,
        payment_status=payload.get("paymentStatus") or None,
    )
    return jsonify(
        {
            "success": True,
            "order": serialize_admin_order(order_document, load_owners([order_document])),
        }
    )


@admin_bp.route("/orders/<order_id>/cancel", methods=["PUT"])
def cancel(order_id: str):
    order_document = cancel_order(get_store(), order_id)
    return jsonify(
        {
            "success": True,
            "order": serialize_admin_order(order_document, load_owners([order_document])),
        }
    )


@admin_bp.route("/stats", methods=["GET"])
def stats():
    orders = get_store().orders
    by_status = {
        entry["_id"]: entry["count"]
        for entry in orders.aggregate(
            [{"$group": {"_id": "$order_status", "count": {"$sum": 1}}}]
        )
    }
    revenue_rows = list(
        orders.aggregate(
            [
                {"$match": {"payment_status": PAYMENT_PAID}},
                {"$group": {"_id": None, "revenue": {"$sum": "$total_amount_minor"}}},
            ]
        )
    )
    revenue_minor = revenue_rows[0]["revenue"] if revenue_rows else 0

    return jsonify(
        {
            "success": True,
            "byStatus": by_status,
            "revenue": money(revenue_minor),
            "revenueMinor": int(revenue_minor),
            "totalOrders": sum(by_status.values()),
        }
    )
