"""Authoritative order totals.

Every amount here is derived from catalog documents. Client payloads never
reach these functions with a price attached.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, Tuple

from .errors import InvalidOrderError

MINOR_UNIT_EXPONENT = 2
MINOR_UNIT_FACTOR = 10**MINOR_UNIT_EXPONENT
MINOR_UNIT_QUANTUM = Decimal(1).scaleb(-MINOR_UNIT_EXPONENT)
MAX_LINE_QUANTITY = 1000
# Totals are stored as BSON int64.
MAX_TOTAL_MINOR = 2**63 - 1


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidOrderError("Price is missing or malformed.")
    try:
        # str() keeps 12.1 as 12.1 instead of its binary expansion.
        converted = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidOrderError("Price is missing or malformed.")
    if not converted.is_finite():
        raise InvalidOrderError("Price is missing or malformed.")
    return converted


def round_to_minor_unit(amount: Decimal) -> Decimal:
    return to_decimal(amount).quantize(MINOR_UNIT_QUANTUM, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    return int(round_to_minor_unit(to_decimal(amount)) * MINOR_UNIT_FACTOR)


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / MINOR_UNIT_FACTOR).quantize(MINOR_UNIT_QUANTUM)


def validate_quantity(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str, float)):
        raise InvalidOrderError("Quantity must be a whole number of at least 1.")
    try:
        numeric = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidOrderError("Quantity must be a whole number of at least 1.")
    if not numeric.is_finite() or numeric != numeric.to_integral_value():
        raise InvalidOrderError("Quantity must be a whole number of at least 1.")
    quantity = int(numeric)
    if quantity < 1:
        raise InvalidOrderError("Quantity must be a whole number of at least 1.")
    if quantity > MAX_LINE_QUANTITY:
        raise InvalidOrderError(f"Quantity cannot exceed {MAX_LINE_QUANTITY}.")
    return quantity


def catalog_unit_price(product_document) -> Decimal:
    """Price charged for one unit: the offer price when set, else the list price."""
    for field in ("offerprice", "price"):
        raw_value = product_document.get(field)
        if raw_value is None:
            continue
        price = to_decimal(raw_value)
        if price > 0:
            return price
    raise InvalidOrderError(
        f"Product {product_document.get('_id')} has no valid price."
    )


def line_total_minor(unit_price, quantity: int) -> int:
    return to_minor_units(to_decimal(unit_price) * int(quantity))


def calculate_order_total(lines: Iterable[Tuple[object, object]]) -> int:
    """Sum ``unit_price * quantity`` over ``lines`` and return minor units.

    The sum is computed in exact decimal arithmetic and rounded half-up to
    the minor unit once, at the end.
    """
    normalized: List[Tuple[Decimal, int]] = []
    for unit_price, quantity in lines or []:
        price = to_decimal(unit_price)
        if price < 0:
            raise InvalidOrderError("Unit price cannot be negative.")
        normalized.append((price, validate_quantity(quantity)))

    if not normalized:
        raise InvalidOrderError("No items in order.")

    total = sum((price * quantity for price, quantity in normalized), Decimal(0))
    # Checked before quantizing, which fails past the decimal context precision.
    if total * MINOR_UNIT_FACTOR > MAX_TOTAL_MINOR:
        raise InvalidOrderError("Order total is too large.")
    return to_minor_units(total)
