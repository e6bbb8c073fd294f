from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from .errors import NotFoundError

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED)

ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES = (ORDER_PROCESSING, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_CANCELLED)


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value or "").strip())
    except (InvalidId, TypeError):
        return None


class OrderLedger:
    def __init__(self, store):
        self.collection = store.orders

    def create(self, order_document: Dict) -> Dict:
        now = datetime.utcnow()
        document = dict(order_document)
        document.setdefault("payment_status", PAYMENT_PENDING)
        document.setdefault("order_status", ORDER_PROCESSING)
        document.setdefault("gateway_order_id", None)
        document.setdefault("gateway_payment_id", None)
        document.setdefault("gateway_signature", None)
        document.setdefault("payment_initiated_at", None)
        document["created_at"] = now
        document["updated_at"] = now
        insert_result = self.collection.insert_one(document)
        document["_id"] = insert_result.inserted_id
        return document

    def find(self, order_id) -> Optional[Dict]:
        object_id = parse_object_id(order_id)
        if object_id is None:
            return None
        return self.collection.find_one({"_id": object_id})

    def get(self, order_id) -> Dict:
        order_document = self.find(order_id)
        if not order_document:
            raise NotFoundError("Order not found")
        return order_document

    def find_for_user(self, user_id) -> List[Dict]:
        cursor = self.collection.find({"user_id": user_id}).sort(
            [("created_at", -1), ("_id", -1)]
        )
        return list(cursor)

    def find_by_payment_id(self, payment_id: str) -> Optional[Dict]:
        return self.collection.find_one({"gateway_payment_id": payment_id})

    def conditional_update(self, order_id, expected: Dict, changes: Dict) -> Optional[Dict]:
        """Apply ``changes`` only if the stored order still matches ``expected``.

        One find-and-modify round trip; returns the updated document, or None
        when the order is gone or no longer in the expected state.
        """
        object_id = parse_object_id(order_id)
        if object_id is None:
            return None
        query = {"_id": object_id, **expected}
        update_fields = {**changes, "updated_at": datetime.utcnow()}
        return self.collection.find_one_and_update(
            query,
            {"$set": update_fields},
            return_document=ReturnDocument.AFTER,
        )
