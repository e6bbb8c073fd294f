import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .errors import ConflictError, ForbiddenError, InvalidOrderError, ValidationError
from .ledger import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
    OrderLedger,
    parse_object_id,
)
from .pricing import calculate_order_total, catalog_unit_price, to_minor_units, validate_quantity

log = logging.getLogger(__name__)

ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "street",
    "city",
    "state",
    "postal_code",
    "country",
)
ADDRESS_FIELD_ALIASES = {
    "first_name": ("first_name", "firstName"),
    "last_name": ("last_name", "lastName"),
    "postal_code": ("postal_code", "postalCode", "postcode", "zip"),
    "street": ("street", "line1", "addressLine1"),
}

# Forward-only moves an admin may make on order_status. Cancellation goes
# through cancel_order so the payment guard applies.
ORDER_STATUS_TRANSITIONS = {
    ORDER_SHIPPED: ORDER_PROCESSING,
    ORDER_DELIVERED: ORDER_SHIPPED,
}


def normalize_address_payload(payload: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(payload, dict):
        return {}

    normalized: Dict[str, str] = {}
    for field in ADDRESS_FIELDS:
        aliases = ADDRESS_FIELD_ALIASES.get(field, (field,))
        value = None
        for alias in aliases:
            if alias in payload:
                value = payload.get(alias)
                break
        if value is None:
            continue
        trimmed = str(value).strip()
        if trimmed:
            normalized[field] = trimmed
    return normalized


def _pick_option(requested, allowed, label: str, product_name: str) -> str:
    value = str(requested or "").strip()
    options = [str(option) for option in allowed or [] if option]
    if value and options and value.lower() not in {option.lower() for option in options}:
        raise InvalidOrderError(f"{label} '{value}' is not available for {product_name}.")
    return value


def build_order_lines(store, raw_items) -> Tuple[List[Dict], int]:
    """Resolve client line items against the catalog.

    Only product reference, size, color and quantity are read from the
    request; price comes from the product document.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidOrderError("No items in order")

    lines: List[Dict] = []
    priced: List[Tuple[object, int]] = []
    for entry in raw_items:
        if not isinstance(entry, dict):
            raise InvalidOrderError("Each order item must be an object.")

        product_id = parse_object_id(
            entry.get("productId") or entry.get("product_id") or entry.get("product")
        )
        if product_id is None:
            raise InvalidOrderError("Invalid product identifier.")

        quantity = validate_quantity(entry.get("quantity"))
        product_document = store.products.find_one({"_id": product_id})
        if not product_document:
            raise InvalidOrderError(f"Product {product_id} not found.")

        product_name = product_document.get("name", "") or ""
        unit_price = catalog_unit_price(product_document)
        images = product_document.get("images") or []
        lines.append(
            {
                "product_id": product_id,
                "name": product_name,
                "image": images[0] if images else "",
                "size": _pick_option(entry.get("size"), product_document.get("sizes"), "Size", product_name),
                "color": _pick_option(entry.get("color"), product_document.get("colors"), "Color", product_name),
                "quantity": quantity,
                "unit_price_minor": to_minor_units(unit_price),
                # Exact catalog price; unit_price_minor is rounded for display.
                "unit_price": str(unit_price),
            }
        )
        priced.append((unit_price, quantity))

    return lines, calculate_order_total(priced)


def place_order(store, user_document, payload: Dict, currency: str) -> Dict:
    payload = payload if isinstance(payload, dict) else {}
    lines, total_amount_minor = build_order_lines(store, payload.get("items"))

    address = normalize_address_payload(payload.get("address"))
    if not address:
        raise ValidationError("Shipping address required")

    ledger = OrderLedger(store)
    order_document = ledger.create(
        {
            "user_id": user_document["_id"],
            "items": lines,
            "address": address,
            "delivery_option": str(payload.get("deliveryOption") or "").strip(),
            "order_notes": str(payload.get("orderNotes") or "").strip(),
            "total_amount_minor": total_amount_minor,
            "currency": currency,
            "payment_status": PAYMENT_PENDING,
            "order_status": ORDER_PROCESSING,
        }
    )

    store.users.update_one(
        {"_id": user_document["_id"]},
        {"$push": {"orders": order_document["_id"]}},
    )
    log.info(
        "Order %s placed by user %s for %s minor units",
        order_document["_id"],
        user_document["_id"],
        total_amount_minor,
    )
    return order_document


def ensure_owner(order_document: Dict, user_id) -> None:
    owner_id = order_document.get("user_id")
    if user_id is None or str(owner_id) != str(user_id):
        raise ForbiddenError("Unauthorized")


def get_order_for_user(store, order_id, user_id) -> Dict:
    order_document = OrderLedger(store).get(order_id)
    ensure_owner(order_document, user_id)
    return order_document


def cancel_order(store, order_id, user_id=None) -> Dict:
    """Cancel a processing, unpaid order. ``user_id=None`` acts as admin."""
    ledger = OrderLedger(store)
    order_document = ledger.get(order_id)
    if user_id is not None:
        ensure_owner(order_document, user_id)

    updated = ledger.conditional_update(
        order_document["_id"],
        {
            "order_status": ORDER_PROCESSING,
            "payment_status": {"$ne": PAYMENT_PAID},
        },
        {"order_status": ORDER_CANCELLED, "cancelled_at": datetime.utcnow()},
    )
    if updated:
        log.info("Order %s cancelled", order_document["_id"])
        return updated

    current = ledger.get(order_id)
    if current.get("payment_status") == PAYMENT_PAID:
        raise ConflictError("Paid orders cannot be cancelled")
    raise ConflictError(
        f"Orders in status '{current.get('order_status')}' cannot be cancelled"
    )


def update_order_status(store, order_id, order_status=None, payment_status=None) -> Dict:
    ledger = OrderLedger(store)
    order_document = ledger.get(order_id)

    if order_status is None and payment_status is None:
        raise ValidationError("Provide orderStatus or paymentStatus")
    if order_status is not None and order_status not in ORDER_STATUSES:
        raise ValidationError("Invalid orderStatus")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValidationError("Invalid paymentStatus")

    if payment_status is not None and payment_status != order_document.get("payment_status"):
        if payment_status != PAYMENT_FAILED:
            raise ConflictError("Payment status can only move from pending to failed here")
        updated = ledger.conditional_update(
            order_document["_id"],
            {"payment_status": PAYMENT_PENDING},
            {"payment_status": PAYMENT_FAILED},
        )
        if not updated:
            raise ConflictError("Only pending payments can be marked failed")
        log.warning("Order %s payment marked failed by admin", order_document["_id"])
        order_document = updated

    if order_status is not None and order_status != order_document.get("order_status"):
        if order_status == ORDER_CANCELLED:
            return cancel_order(store, order_id)

        previous_status = ORDER_STATUS_TRANSITIONS.get(order_status)
        if previous_status is None or order_document.get("order_status") != previous_status:
            raise ConflictError(
                f"Cannot move order from '{order_document.get('order_status')}' to '{order_status}'"
            )
        expected = {"order_status": previous_status, "payment_status": PAYMENT_PAID}
        updated = ledger.conditional_update(
            order_document["_id"], expected, {"order_status": order_status}
        )
        if not updated:
            raise ConflictError("Only paid orders can be shipped or delivered")
        log.info("Order %s moved to %s", order_document["_id"], order_status)
        order_document = updated

    return order_document
