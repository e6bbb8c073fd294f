from flask import Blueprint, current_app, jsonify, request

from ..context import current_user, get_gateway, get_store
from ..errors import ValidationError
from ..notifications import send_order_confirmation_email
from ..payments import create_gateway_order, fetch_payment_for_user, verify_payment
from ..serializers import serialize_order
from .cart import clear_cart

payments_bp = Blueprint("payment", __name__, url_prefix="/api/payment")


def build_paid_hook(store, user_document):
    config = current_app.config

    def on_paid(order_document):
        clear_cart(store, order_document["user_id"])
        recipient = user_document.get("email") or (order_document.get("address") or {}).get("email")
        if config.get("RESEND_API_KEY") and recipient:
            send_order_confirmation_email(
                order_document,
                recipient,
                config["RESEND_API_KEY"],
                config["ORDER_EMAIL_SENDER"],
            )

    return on_paid


@payments_bp.route("/create-order", methods=["POST"])
def create_order():
    user_document = current_user()
    payload = request.get_json(silent=True) or {}
    order_id = str(payload.get("orderId") or "").strip()
    if not order_id:
        raise ValidationError("orderId is required")

    reference = create_gateway_order(get_store(), get_gateway(), order_id, user_document["_id"])
    return jsonify({"success": True, "order": reference})


@payments_bp.route("/verify", methods=["POST"])
def verify():
    user_document = current_user()
    payload = request.get_json(silent=True) or {}
    store = get_store()

    order_document = verify_payment(
        store,
        get_gateway(),
        order_id=str(payload.get("orderId") or "").strip(),
        user_id=user_document["_id"],
        gateway_order_id=payload.get("razorpay_order_id"),
        gateway_payment_id=payload.get("razorpay_payment_id"),
        signature=payload.get("razorpay_signature"),
        on_paid=build_paid_hook(store, user_document),
    )
    return jsonify(
        {
            "success": True,
            "message": "Payment verified successfully",
            "order": serialize_order(order_document),
        }
    )


@payments_bp.route("/<payment_id>", methods=["GET"])
def get_payment(payment_id: str):
    user_document = current_user()
    payment = fetch_payment_for_user(get_store(), get_gateway(), payment_id, user_document["_id"])
    return jsonify({"success": True, "payment": payment})
