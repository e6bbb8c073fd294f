from datetime import datetime
from typing import Dict, Iterable, List, Optional

from bson import ObjectId

from .pricing import from_minor_units, line_total_minor


def isoformat(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return f"{value.isoformat()}Z"


def stringify_id(value) -> str:
    if isinstance(value, ObjectId):
        return str(value)
    return str(value or "")


def money(amount_minor) -> float:
    return float(from_minor_units(int(amount_minor or 0)))


def serialize_order_item(entry: Dict) -> Dict:
    unit_price_minor = int(entry.get("unit_price_minor") or 0)
    quantity = int(entry.get("quantity") or 0)
    if entry.get("unit_price") is not None:
        line_minor = line_total_minor(entry["unit_price"], quantity)
    else:
        line_minor = unit_price_minor * quantity
    return {
        "product": stringify_id(entry.get("product_id")),
        "name": entry.get("name", "") or "",
        "image": entry.get("image", "") or "",
        "size": entry.get("size", "") or "",
        "color": entry.get("color", "") or "",
        "quantity": quantity,
        "price": money(unit_price_minor),
        "lineTotal": money(line_minor),
    }


def serialize_order(order_document, include_user: bool = False):
    if not order_document:
        return None

    serialized = {
        "id": stringify_id(order_document.get("_id")),
        "items": [serialize_order_item(entry) for entry in order_document.get("items") or []],
        "address": dict(order_document.get("address") or {}),
        "totalAmount": money(order_document.get("total_amount_minor")),
        "totalAmountMinor": int(order_document.get("total_amount_minor") or 0),
        "currency": order_document.get("currency") or "",
        "paymentStatus": order_document.get("payment_status") or "",
        "orderStatus": order_document.get("order_status") or "",
        "gatewayOrderId": order_document.get("gateway_order_id") or "",
        "gatewayPaymentId": order_document.get("gateway_payment_id") or "",
        "deliveryOption": order_document.get("delivery_option") or "",
        "orderNotes": order_document.get("order_notes") or "",
        "createdAt": isoformat(order_document.get("created_at")),
        "updatedAt": isoformat(order_document.get("updated_at")),
        "paidAt": isoformat(order_document.get("paid_at")),
    }
    if include_user:
        serialized["user"] = stringify_id(order_document.get("user_id"))
    return serialized


def serialize_product_summary(product_document) -> Dict:
    if not product_document:
        return {}
    return {
        "id": stringify_id(product_document.get("_id")),
        "name": product_document.get("name", "") or "",
        "brand": product_document.get("brand", "") or "",
        "images": list(product_document.get("images") or []),
        "price": product_document.get("price"),
        "offerprice": product_document.get("offerprice"),
        "rating": product_document.get("rating", 0) or 0,
        "stock": product_document.get("stock"),
    }


def serialize_product(product_document, reviews: Optional[Iterable[Dict]] = None):
    if not product_document:
        return None

    serialized = serialize_product_summary(product_document)
    serialized.update(
        {
            "slug": product_document.get("slug", "") or "",
            "description": product_document.get("description", "") or "",
            "sizes": list(product_document.get("sizes") or []),
            "colors": list(product_document.get("colors") or []),
            "materials": list(product_document.get("materials") or []),
            "gender": product_document.get("gender", "") or "",
            "category": product_document.get("category", "") or "",
            "subcategory": product_document.get("subcategory", "") or "",
            "occasion": product_document.get("occasion", "") or "",
            "discountPrice": product_document.get("discount_price", 0) or 0,
            "reviewCount": product_document.get("review_count", 0) or 0,
            "styleType": product_document.get("style_type", "") or "",
            "fit": product_document.get("fit", "") or "",
            "sleeve": product_document.get("sleeve", "") or "",
            "neck": product_document.get("neck", "") or "",
            "colorVariants": [
                {"color": variant.get("color", ""), "images": list(variant.get("images") or [])}
                for variant in product_document.get("color_variants") or []
                if isinstance(variant, dict)
            ],
            "createdAt": isoformat(product_document.get("created_at")),
        }
    )
    if reviews is not None:
        serialized["reviews"] = list(reviews)
    return serialized


def serialize_review(review_document, user_document=None) -> Dict:
    user_document = user_document or {}
    return {
        "id": stringify_id(review_document.get("_id")),
        "product": stringify_id(review_document.get("product_id")),
        "rating": review_document.get("rating"),
        "comment": review_document.get("comment", "") or "",
        "helpful": review_document.get("helpful", 0) or 0,
        "user": {
            "id": stringify_id(review_document.get("user_id")),
            "name": user_document.get("name", "") or "",
            "avatar": user_document.get("avatar", "") or "",
        },
        "createdAt": isoformat(review_document.get("created_at")),
    }


def serialize_user_profile(user_document) -> Dict[str, object]:
    if not user_document:
        return {}
    return {
        "id": stringify_id(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "phone": user_document.get("phone", "") or "",
        "avatar": user_document.get("avatar", "") or "",
        "authType": user_document.get("auth_type", "local") or "local",
        "role": user_document.get("role", "standard") or "standard",
    }


def serialize_cart(cart_entries, products_by_id: Dict[ObjectId, Dict]) -> List[Dict]:
    serialized: List[Dict] = []
    for entry in cart_entries or []:
        product_document = products_by_id.get(entry.get("product_id"))
        serialized.append(
            {
                "id": stringify_id(entry.get("_id")),
                "product": serialize_product_summary(product_document)
                if product_document
                else None,
                "size": entry.get("size", "") or "",
                "color": entry.get("color", "") or "",
                "quantity": int(entry.get("quantity") or 1),
            }
        )
    return serialized
