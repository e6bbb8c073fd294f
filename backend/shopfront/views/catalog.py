import math
import re
import unicodedata
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from flask import Blueprint, jsonify, request
from pymongo.errors import DuplicateKeyError

from ..context import current_user, get_store
from ..errors import NotFoundError, ValidationError
from ..ledger import parse_object_id
from ..serializers import serialize_product, serialize_product_summary, serialize_review

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/products")
search_bp = Blueprint("search", __name__, url_prefix="/api/search")

TEXT_FILTER_FIELDS = ("gender", "category", "subcategory", "occasion", "brand")
SORT_OPTIONS = {
    "price-low": [("offerprice", 1)],
    "price-high": [("offerprice", -1)],
    "rating": [("rating", -1)],
}
DEFAULT_SORT = [("created_at", -1), ("_id", -1)]
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
SEARCH_PAGE_SIZE = 16
PRICE_CAP_PATTERN = re.compile(r"(under|below|less|upto|max)\s+(\d+)", re.IGNORECASE)


def slugify(value: Optional[str]) -> str:
    normalized_name = " ".join(str(value or "").split()).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", normalized_name)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    if not slug:
        slug = uuid4().hex
    return slug


def safe_positive_int(value, default: int) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def safe_float(value) -> Optional[float]:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def contains_pattern(value: str) -> Dict[str, str]:
    return {"$regex": re.escape(value), "$options": "i"}


def build_product_filter(args) -> Dict:
    query: Dict = {}

    for field in TEXT_FILTER_FIELDS:
        raw_value = str(args.get(field) or "").strip()
        if not raw_value:
            continue
        # "shirts" should still match "Shirt".
        value = re.sub(r"s$", "", raw_value).strip() or raw_value
        query[field] = contains_pattern(value)

    price_filter: Dict[str, float] = {}
    min_price = safe_float(args.get("minPrice"))
    max_price = safe_float(args.get("maxPrice"))
    if min_price is not None:
        price_filter["$gte"] = min_price
    if max_price is not None:
        price_filter["$lte"] = max_price
    if price_filter:
        query["offerprice"] = price_filter

    raw_sizes = args.getlist("sizes") if hasattr(args, "getlist") else args.get("sizes")
    if isinstance(raw_sizes, str):
        raw_sizes = [raw_sizes]
    sizes: List[str] = []
    for entry in raw_sizes or []:
        sizes.extend(size.strip().upper() for size in str(entry).split(",") if size.strip())
    if sizes:
        query["sizes"] = {"$in": sizes}

    search_term = str(args.get("search") or "").strip()
    if search_term:
        query["$or"] = [
            {field: contains_pattern(search_term)}
            for field in ("name", "description", "brand", "category")
        ]

    return query


def load_product(product_id: str):
    object_id = parse_object_id(product_id)
    product_document = get_store().products.find_one({"_id": object_id}) if object_id else None
    if not product_document:
        raise NotFoundError("Product not found")
    return product_document


def load_reviews(product_id) -> List[Dict]:
    store = get_store()
    review_documents = list(
        store.reviews.find({"product_id": product_id}).sort("created_at", -1)
    )
    user_ids = list({review.get("user_id") for review in review_documents})
    users_by_id = {
        user["_id"]: user
        for user in store.users.find({"_id": {"$in": user_ids}}, {"name": 1, "avatar": 1})
    }
    return [
        serialize_review(review, users_by_id.get(review.get("user_id")))
        for review in review_documents
    ]


@catalog_bp.route("", methods=["GET"])
def list_products():
    page = safe_positive_int(request.args.get("page"), 1)
    limit = min(safe_positive_int(request.args.get("limit"), DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    query = build_product_filter(request.args)
    sort = SORT_OPTIONS.get(request.args.get("sort"), DEFAULT_SORT)

    store = get_store()
    cursor = store.products.find(query).sort(sort).skip((page - 1) * limit).limit(limit)
    products = [serialize_product(document) for document in cursor]
    total = store.products.count_documents(query)

    return jsonify(
        {
            "success": True,
            "products": products,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }
    )


@catalog_bp.route("/filters/options", methods=["GET"])
def filter_options():
    products = get_store().products

    def distinct_values(field: str) -> List:
        values = []
        for value in products.distinct(field):
            if value in (None, "") or value in values:
                continue
            values.append(value)
        return values

    return jsonify(
        {
            "success": True,
            "filters": {
                "categories": distinct_values("category"),
                "subcategories": distinct_values("subcategory"),
                "brands": distinct_values("brand"),
                "genders": distinct_values("gender"),
                "occasions": distinct_values("occasion"),
                "sizes": distinct_values("sizes"),
                "fits": distinct_values("fit"),
                "sleeves": distinct_values("sleeve"),
                "materials": distinct_values("materials"),
                "ratings": [5, 4, 3, 2, 1],
            },
        }
    )


@catalog_bp.route("/slug/<slug>", methods=["GET"])
def get_product_by_slug(slug: str):
    product_document = get_store().products.find_one({"slug": slug})
    if not product_document:
        raise NotFoundError("Product not found")
    return jsonify(
        {
            "success": True,
            "product": serialize_product(
                product_document, reviews=load_reviews(product_document["_id"])
            ),
        }
    )


@catalog_bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product_document = load_product(product_id)
    return jsonify(
        {
            "success": True,
            "product": serialize_product(
                product_document, reviews=load_reviews(product_document["_id"])
            ),
        }
    )


@catalog_bp.route("/<product_id>/reviews", methods=["POST"])
def add_review(product_id: str):
    user_document = current_user()
    payload = request.get_json(silent=True) or {}
    comment = str(payload.get("comment") or "").strip()
    rating = safe_float(payload.get("rating"))

    if rating is None or not comment:
        raise ValidationError("Rating and comment are required")
    if rating < 1 or rating > 5:
        raise ValidationError("Rating must be between 1 and 5")

    product_document = load_product(product_id)
    store = get_store()
    ownership = {"user_id": user_document["_id"], "product_id": product_document["_id"]}
    if store.reviews.find_one(ownership):
        raise ValidationError("You already reviewed this product")

    review_document = {
        **ownership,
        "rating": rating,
        "comment": comment,
        "helpful": 0,
        "created_at": datetime.utcnow(),
    }
    try:
        review_document["_id"] = store.reviews.insert_one(review_document).inserted_id
    except DuplicateKeyError:
        raise ValidationError("You already reviewed this product")

    ratings = [
        review.get("rating", 0)
        for review in store.reviews.find({"product_id": product_document["_id"]}, {"rating": 1})
    ]
    store.products.update_one(
        {"_id": product_document["_id"]},
        {
            "$set": {
                "rating": round(sum(ratings) / len(ratings), 2),
                "review_count": len(ratings),
            }
        },
    )

    return jsonify({"success": True, "review": serialize_review(review_document, user_document)}), 201


@search_bp.route("", methods=["GET"])
def search_products():
    q = str(request.args.get("q") or "").strip()
    page = safe_positive_int(request.args.get("page"), 1)
    if not q:
        return jsonify({"success": True, "products": []})

    price_filter: Dict[str, float] = {"$gte": 0}
    price_match = PRICE_CAP_PATTERN.search(q)
    if price_match:
        price_filter["$lte"] = float(price_match.group(2))

    conditions: List[Dict] = [{"offerprice": price_filter}]
    text = " ".join(PRICE_CAP_PATTERN.sub(" ", q).split())
    if text:
        pattern = contains_pattern(text)
        conditions.insert(
            0,
            {
                "$or": [
                    {field: pattern}
                    for field in ("name", "brand", "description", "category", "colors")
                ]
            },
        )
    query = {"$and": conditions}

    cursor = (
        get_store()
        .products.find(query, {"name": 1, "brand": 1, "offerprice": 1, "price": 1, "images": 1})
        .skip((page - 1) * SEARCH_PAGE_SIZE)
        .limit(SEARCH_PAGE_SIZE)
    )
    return jsonify(
        {"success": True, "products": [serialize_product_summary(document) for document in cursor]}
    )
