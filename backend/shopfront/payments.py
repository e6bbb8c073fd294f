"""Payment settlement.

An order moves ``pending -> paid`` only after every fact backing the move
has been recomputed locally (the HMAC signature) or fetched from the
gateway server-to-server (capture status and amount). Values in the
callback body are checked against those facts, never believed.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .errors import (
    AmountMismatchError,
    ConflictError,
    NotFoundError,
    PaymentNotCapturedError,
    SignatureMismatchError,
    ValidationError,
)
from .gateway import signatures_match
from .ledger import ORDER_CANCELLED, PAYMENT_PAID, PAYMENT_PENDING, OrderLedger
from .orders import ensure_owner

log = logging.getLogger(__name__)

CAPTURED = "captured"
PAYMENT_INITIATION_TIMEOUT = timedelta(minutes=5)


def create_gateway_order(store, gateway, order_id, user_id) -> Dict:
    ledger = OrderLedger(store)
    order_document = ledger.get(order_id)
    ensure_owner(order_document, user_id)
    _ensure_payable(order_document)
    if order_document.get("gateway_order_id"):
        raise ConflictError("Payment already initiated for this order")

    # Claim the order before calling out so concurrent requests cannot
    # each create a gateway order. A claim older than the timeout is stale.
    now = datetime.utcnow()
    # Millisecond precision, as BSON stores it, so the claim matches on write-back.
    claimed_at = now.replace(microsecond=now.microsecond // 1000 * 1000)
    claimed = ledger.conditional_update(
        order_document["_id"],
        {
            "payment_status": PAYMENT_PENDING,
            "order_status": {"$ne": ORDER_CANCELLED},
            "gateway_order_id": None,
            "$or": [
                {"payment_initiated_at": None},
                {"payment_initiated_at": {"$lt": claimed_at - PAYMENT_INITIATION_TIMEOUT}},
            ],
        },
        {"payment_initiated_at": claimed_at},
    )
    if not claimed:
        raise ConflictError("Payment already initiated for this order")

    amount = int(claimed["total_amount_minor"])
    currency = claimed.get("currency") or "INR"
    try:
        gateway_order = gateway.create_order(
            amount=amount, currency=currency, receipt=f"order_{claimed['_id']}"
        )
        gateway_order_id = str(gateway_order.get("id") or "").strip()
        if not gateway_order_id:
            raise ConflictError("Payment provider did not return an order reference")
    except Exception:
        ledger.conditional_update(
            claimed["_id"],
            {"payment_initiated_at": claimed_at, "gateway_order_id": None},
            {"payment_initiated_at": None},
        )
        raise

    updated = ledger.conditional_update(
        claimed["_id"],
        {
            "payment_status": PAYMENT_PENDING,
            "order_status": {"$ne": ORDER_CANCELLED},
            "payment_initiated_at": claimed_at,
            "gateway_order_id": None,
        },
        {"gateway_order_id": gateway_order_id},
    )
    if not updated:
        log.warning(
            "Gateway order %s for order %s lost its initiation claim",
            gateway_order_id,
            claimed["_id"],
        )
        raise ConflictError("Order changed while payment was being initiated")

    log.info("Gateway order %s created for order %s", gateway_order_id, order_document["_id"])
    return {
        "orderId": str(updated["_id"]),
        "gatewayOrderId": gateway_order_id,
        "amount": amount,
        "currency": currency,
        "keyId": getattr(gateway, "key_id", ""),
    }


def _ensure_payable(order_document: Dict) -> None:
    payment_status = order_document.get("payment_status")
    if payment_status == PAYMENT_PAID:
        raise ConflictError("Payment already verified")
    if payment_status != PAYMENT_PENDING:
        raise ConflictError(f"Payment is {payment_status}")
    if order_document.get("order_status") == ORDER_CANCELLED:
        raise ConflictError("Order was cancelled")


def _reject(error_class, order_document: Dict, user_id, reason: str):
    log.warning(
        "Possible payment tampering on order %s by user %s: %s",
        order_document.get("_id"),
        user_id,
        reason,
    )
    raise error_class()


def verify_payment(
    store,
    gateway,
    *,
    order_id,
    user_id,
    gateway_order_id: Optional[str],
    gateway_payment_id: Optional[str],
    signature: Optional[str],
    on_paid: Optional[Callable[[Dict], None]] = None,
) -> Dict:
    ledger = OrderLedger(store)
    order_document = ledger.find(order_id)
    if not order_document:
        raise NotFoundError("Order not found")
    ensure_owner(order_document, user_id)

    if not gateway_order_id or not gateway_payment_id or not signature:
        raise ValidationError("Missing payment verification fields")

    _ensure_payable(order_document)
    stored_gateway_order_id = order_document.get("gateway_order_id")
    if not stored_gateway_order_id:
        raise ConflictError("Payment has not been initiated for this order")

    # Everything below is the transient "verifying" state: nothing is
    # written until all checks pass.
    if str(gateway_order_id) != stored_gateway_order_id:
        _reject(SignatureMismatchError, order_document, user_id, "gateway order id mismatch")

    expected_signature = gateway.sign(stored_gateway_order_id, str(gateway_payment_id))
    if not signatures_match(expected_signature, signature):
        _reject(SignatureMismatchError, order_document, user_id, "signature mismatch")

    payment = gateway.fetch_payment(str(gateway_payment_id))
    if str(payment.get("status") or "").lower() != CAPTURED:
        _reject(
            PaymentNotCapturedError,
            order_document,
            user_id,
            f"payment {gateway_payment_id} status is {payment.get('status')}",
        )
    if payment.get("order_id") and payment.get("order_id") != stored_gateway_order_id:
        _reject(
            SignatureMismatchError,
            order_document,
            user_id,
            f"payment {gateway_payment_id} belongs to gateway order {payment.get('order_id')}",
        )

    captured_amount = payment.get("amount")
    expected_amount = int(order_document["total_amount_minor"])
    if (
        isinstance(captured_amount, bool)
        or not isinstance(captured_amount, int)
        or captured_amount != expected_amount
    ):
        _reject(
            AmountMismatchError,
            order_document,
            user_id,
            f"captured {captured_amount!r}, expected {expected_amount}",
        )
    captured_currency = payment.get("currency")
    if captured_currency and captured_currency != order_document.get("currency"):
        _reject(
            AmountMismatchError,
            order_document,
            user_id,
            f"captured currency {captured_currency}, expected {order_document.get('currency')}",
        )

    updated = ledger.conditional_update(
        order_document["_id"],
        {
            "payment_status": PAYMENT_PENDING,
            "order_status": {"$ne": ORDER_CANCELLED},
            "gateway_order_id": stored_gateway_order_id,
        },
        {
            "payment_status": PAYMENT_PAID,
            "gateway_payment_id": str(gateway_payment_id),
            "gateway_signature": signature,
            "paid_at": datetime.utcnow(),
        },
    )
    if not updated:
        current = ledger.find(order_document["_id"]) or {}
        if current.get("order_status") == ORDER_CANCELLED:
            log.warning(
                "Captured payment %s arrived for cancelled order %s; refund required",
                gateway_payment_id,
                order_document["_id"],
            )
            raise ConflictError("Order was cancelled")
        raise ConflictError("Payment already verified")

    log.info("Payment %s verified for order %s", gateway_payment_id, updated["_id"])
    if on_paid is not None:
        try:
            on_paid(updated)
        except Exception:
            log.exception("Post-payment hook failed for order %s", updated["_id"])
    return updated


def fetch_payment_for_user(store, gateway, payment_id: str, user_id) -> Dict:
    order_document = OrderLedger(store).find_by_payment_id(str(payment_id or ""))
    if not order_document or str(order_document.get("user_id")) != str(user_id):
        raise NotFoundError("Payment not found")
    return gateway.fetch_payment(payment_id)
