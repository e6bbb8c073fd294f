import pytest

from shopfront.errors import ConflictError, ForbiddenError, InvalidOrderError, NotFoundError, ValidationError
from shopfront.ledger import OrderLedger
from shopfront.orders import cancel_order, get_order_for_user, place_order, update_order_status
from shopfront.serializers import serialize_order

from conftest import SHIPPING_ADDRESS, order_items


def mark_paid(store, order_document):
    store.orders.update_one({"_id": order_document["_id"]}, {"$set": {"payment_status": "paid"}})


def test_total_is_computed_from_catalog_prices(placed_order):
    assert placed_order["total_amount_minor"] == 130000
    assert [line["unit_price_minor"] for line in placed_order["items"]] == [50000, 30000]
    assert placed_order["payment_status"] == "pending"
    assert placed_order["order_status"] == "processing"
    assert placed_order["gateway_order_id"] is None


def test_client_supplied_prices_are_ignored(store, user, products):
    items = [dict(entry, price=1, unit_price=1) for entry in order_items(products)]
    order_document = place_order(
        store,
        user,
        {"items": items, "address": SHIPPING_ADDRESS, "totalAmount": 5},
        "INR",
    )

    assert order_document["total_amount_minor"] == 130000


def test_order_is_linked_to_the_user(store, user, placed_order):
    stored_user = store.users.find_one({"_id": user["_id"]})
    assert stored_user["orders"] == [placed_order["_id"]]


def test_address_aliases_are_normalized(placed_order):
    address = placed_order["address"]
    assert address["first_name"] == "Asha"
    assert address["postal_code"] == "560001"
    assert "firstName" not in address


def test_empty_order_is_rejected(store, user):
    with pytest.raises(InvalidOrderError):
        place_order(store, user, {"items": [], "address": SHIPPING_ADDRESS}, "INR")


def test_unknown_product_is_rejected(store, user):
    items = [{"productId": "5f1d7f0b8f1b2c3d4e5f6a7b", "quantity": 1}]
    with pytest.raises(InvalidOrderError):
        place_order(store, user, {"items": items, "address": SHIPPING_ADDRESS}, "INR")


def test_unavailable_size_is_rejected(store, user, products):
    items = [{"productId": str(products["dress"]["_id"]), "quantity": 1, "size": "XL"}]
    with pytest.raises(InvalidOrderError):
        place_order(store, user, {"items": items, "address": SHIPPING_ADDRESS}, "INR")


def test_zero_quantity_is_rejected(store, user, products):
    items = [{"productId": str(products["tee"]["_id"]), "quantity": 0}]
    with pytest.raises(InvalidOrderError):
        place_order(store, user, {"items": items, "address": SHIPPING_ADDRESS}, "INR")


@pytest.mark.parametrize("quantity", [1001, 10**20])
def test_quantity_above_the_cap_is_rejected(store, user, products, quantity):
    items = [{"productId": str(products["tee"]["_id"]), "quantity": quantity}]
    with pytest.raises(InvalidOrderError):
        place_order(store, user, {"items": items, "address": SHIPPING_ADDRESS}, "INR")

    assert store.orders.count_documents({}) == 0


def test_line_totals_use_the_exact_unit_price(store, user):
    product_id = store.products.insert_one(
        {"name": "Sticker", "price": "0.005", "sizes": [], "colors": []}
    ).inserted_id
    items = [{"productId": str(product_id), "quantity": 3}]

    order_document = place_order(store, user, {"items": items, "address": SHIPPING_ADDRESS}, "INR")
    serialized = serialize_order(order_document)

    assert order_document["items"][0]["unit_price"] == "0.005"
    assert order_document["total_amount_minor"] == 2
    assert serialized["items"][0]["lineTotal"] == serialized["totalAmount"] == 0.02


def test_shipping_address_is_required(store, user, products):
    with pytest.raises(ValidationError):
        place_order(store, user, {"items": order_items(products)}, "INR")


def test_orders_are_private_to_their_owner(store, placed_order, other_user):
    with pytest.raises(ForbiddenError):
        get_order_for_user(store, placed_order["_id"], other_user["_id"])


def test_missing_order_is_not_found(store, user):
    with pytest.raises(NotFoundError):
        get_order_for_user(store, "5f1d7f0b8f1b2c3d4e5f6a7b", user["_id"])


def test_owner_can_cancel_pending_order(store, user, placed_order):
    cancelled = cancel_order(store, placed_order["_id"], user["_id"])

    assert cancelled["order_status"] == "cancelled"
    assert cancelled["payment_status"] == "pending"


def test_cancelling_twice_is_a_conflict(store, user, placed_order):
    cancel_order(store, placed_order["_id"], user["_id"])

    with pytest.raises(ConflictError):
        cancel_order(store, placed_order["_id"], user["_id"])


def test_other_users_cannot_cancel(store, placed_order, other_user):
    with pytest.raises(ForbiddenError):
        cancel_order(store, placed_order["_id"], other_user["_id"])

    assert OrderLedger(store).get(placed_order["_id"])["order_status"] == "processing"


def test_paid_orders_cannot_be_cancelled_by_anyone(store, user, placed_order):
    mark_paid(store, placed_order)

    with pytest.raises(ConflictError, match="Paid orders cannot be cancelled"):
        cancel_order(store, placed_order["_id"], user["_id"])
    with pytest.raises(ConflictError):
        cancel_order(store, placed_order["_id"])

    assert OrderLedger(store).get(placed_order["_id"])["order_status"] == "processing"


def test_unpaid_orders_cannot_ship(store, placed_order):
    with pytest.raises(ConflictError):
        update_order_status(store, placed_order["_id"], order_status="shipped")


def test_paid_orders_move_forward_one_step_at_a_time(store, placed_order):
    mark_paid(store, placed_order)

    with pytest.raises(ConflictError):
        update_order_status(store, placed_order["_id"], order_status="delivered")

    shipped = update_order_status(store, placed_order["_id"], order_status="shipped")
    assert shipped["order_status"] == "shipped"

    delivered = update_order_status(store, placed_order["_id"], order_status="delivered")
    assert delivered["order_status"] == "delivered"

    with pytest.raises(ConflictError):
        update_order_status(store, placed_order["_id"], order_status="shipped")


def test_admin_cancellation_goes_through_the_payment_guard(store, placed_order):
    cancelled = update_order_status(store, placed_order["_id"], order_status="cancelled")
    assert cancelled["order_status"] == "cancelled"


def test_admin_can_mark_pending_payment_failed(store, placed_order):
    failed = update_order_status(store, placed_order["_id"], payment_status="failed")
    assert failed["payment_status"] == "failed"


def test_admin_cannot_mark_payment_paid(store, placed_order):
    with pytest.raises(ConflictError):
        update_order_status(store, placed_order["_id"], payment_status="paid")

    assert OrderLedger(store).get(placed_order["_id"])["payment_status"] == "pending"


def test_admin_cannot_fail_a_paid_order(store, placed_order):
    mark_paid(store, placed_order)

    with pytest.raises(ConflictError):
        update_order_status(store, placed_order["_id"], payment_status="failed")


@pytest.mark.parametrize(
    "changes",
    [{}, {"order_status": "lost"}, {"payment_status": "refunded"}],
)
def test_invalid_status_updates_are_rejected(store, placed_order, changes):
    with pytest.raises(ValidationError):
        update_order_status(store, placed_order["_id"], **changes)
