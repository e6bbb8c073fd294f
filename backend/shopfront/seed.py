"""Replace the product catalog with the records in a JSON file.

Usage: ``python -m shopfront.seed products.json``
"""

import json
import logging
import os
import re
import sys
from datetime import datetime
from typing import Dict, Iterable, List

from dotenv import load_dotenv
from pymongo import MongoClient

from .errors import StoreUnavailableError
from .store import Store, wait_for_store
from .views.catalog import slugify

log = logging.getLogger("shopfront.seed")

FIELD_ALIASES = {
    "discountPrice": "discount_price",
    "reviewCount": "review_count",
    "numReviews": "review_count",
    "styleType": "style_type",
    "colorVariants": "color_variants",
    "createdAt": "created_at",
}


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def normalize_product_record(record: Dict) -> Dict:
    product: Dict = {}
    for key, value in record.items():
        if key in ("_id", "id", "reviews"):
            continue
        product[FIELD_ALIASES.get(key) or _snake_case(key)] = value

    product["slug"] = slugify(product.get("slug") or product.get("name"))
    product.setdefault("rating", 0)
    product.setdefault("review_count", 0)
    product.setdefault("created_at", datetime.utcnow())
    return product


def seed_products(store, records: Iterable[Dict]) -> int:
    products: List[Dict] = []
    seen_slugs = set()
    for record in records:
        product = normalize_product_record(record)
        base_slug = product["slug"]
        suffix = 2
        while product["slug"] in seen_slugs:
            product["slug"] = f"{base_slug}-{suffix}"
            suffix += 1
        seen_slugs.add(product["slug"])
        products.append(product)

    removed = store.products.delete_many({}).deleted_count
    log.info("Cleared %s existing products", removed)
    if not products:
        return 0

    inserted = store.products.insert_many(products).inserted_ids
    log.info("Seeded %s products", len(inserted))
    return len(inserted)


def main(argv=None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        log.error("Usage: python -m shopfront.seed <products.json>")
        return 2

    with open(argv[0], "r", encoding="utf-8") as handle:
        records = json.load(handle)
    if not isinstance(records, list):
        log.error("Expected a JSON array of products in %s", argv[0])
        return 2

    client = MongoClient(os.getenv("MONGO_URI", "mongodb://localhost:27017/shopfront"))
    try:
        wait_for_store(lambda: client.admin.command("ping"))
        seed_products(Store(client.get_default_database()), records)
    except StoreUnavailableError as exc:
        log.critical("%s", exc)
        return 1
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
