import logging
import time
from typing import Callable, Optional

from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.errors import PyMongoError

from .errors import StoreUnavailableError

log = logging.getLogger(__name__)


class Store:
    """Explicit handle over the shop's MongoDB database.

    Built once by the app factory (or by a test) and handed to every
    component that reads or writes documents.
    """

    def __init__(self, database):
        self.database = database

    @property
    def orders(self):
        return self.database.orders

    @property
    def products(self):
        return self.database.products

    @property
    def users(self):
        return self.database.users

    @property
    def reviews(self):
        return self.database.reviews

    def ensure_indexes(self):
        self.orders.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.orders.create_index([("order_status", ASCENDING)])
        self.orders.create_index([("gateway_payment_id", ASCENDING)], sparse=True)
        self.products.create_index([("slug", ASCENDING)], unique=True, sparse=True)
        self.products.create_index(
            [("name", TEXT), ("brand", TEXT), ("description", TEXT)]
        )
        self.products.create_index(
            [("gender", ASCENDING), ("category", ASCENDING), ("subcategory", ASCENDING)]
        )
        self.products.create_index([("price", ASCENDING)])
        self.products.create_index([("rating", DESCENDING)])
        self.reviews.create_index(
            [("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True
        )
        self.users.create_index([("email", ASCENDING)], unique=True)
        self.users.create_index([("phone", ASCENDING)], unique=True, sparse=True)
        self.users.create_index([("google_id", ASCENDING)], unique=True, sparse=True)


def wait_for_store(
    ping: Callable[[], object],
    *,
    retries: int = 5,
    backoff: float = 0.5,
    max_backoff: float = 20.0,
    sleep: Optional[Callable[[float], None]] = None,
):
    """Call ``ping`` until it succeeds, at most ``retries + 1`` times.

    The delay doubles after every failure, capped at ``max_backoff``.
    Raises StoreUnavailableError once the attempts are exhausted.
    """
    sleep = sleep or time.sleep
    delay = backoff
    attempts = max(0, int(retries)) + 1
    last_error = None

    for attempt in range(1, attempts + 1):
        try:
            ping()
            if attempt > 1:
                log.info("MongoDB reachable after %s attempts", attempt)
            return
        except PyMongoError as exc:
            last_error = exc
            log.error("MongoDB connection error: %s", exc)
            if attempt == attempts:
                break
            log.info(
                "Retrying connection in %.1fs... (%s retries left)",
                delay,
                attempts - attempt,
            )
            sleep(delay)
            delay = min(max_backoff, delay * 2)

    raise StoreUnavailableError(f"MongoDB unreachable after {attempts} attempts: {last_error}")
