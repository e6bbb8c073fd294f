"""
Pytest configuration and fixtures.
"""
from datetime import datetime
from typing import Callable, Dict, List, Optional

import bcrypt
import mongomock
import pytest
from flask_jwt_extended import create_access_token

from shopfront import create_app
from shopfront.errors import GatewayError
from shopfront.gateway import compute_payment_signature
from shopfront.orders import place_order
from shopfront.store import Store

ADMIN_SECRET = "admin-secret-for-tests"
GOOGLE_CLIENT_ID = "google-client-for-tests.apps.googleusercontent.com"
SHIPPING_ADDRESS = {
    "firstName": "Asha",
    "lastName": "Rao",
    "email": "asha@example.com",
    "phone": "9000000001",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postalCode": "560001",
    "country": "IN",
}


class FakeGateway:
    """In-memory stand-in for the Razorpay orders and payments API."""

    key_id = "rzp_test_key"

    def __init__(self, key_secret: str = "rzp_test_secret"):
        self.key_secret = key_secret
        self.created_orders: List[Dict] = []
        self.payments: Dict[str, Dict] = {}
        self.fetched: List[str] = []
        self.before_fetch: Optional[Callable[[], None]] = None
        self.before_create: Optional[Callable[[], None]] = None

    def sign(self, gateway_order_id: str, gateway_payment_id: str) -> str:
        return compute_payment_signature(gateway_order_id, gateway_payment_id, self.key_secret)

    def create_order(self, amount: int, currency: str, receipt: str) -> Dict:
        hook, self.before_create = self.before_create, None
        if hook is not None:
            hook()
        gateway_order = {
            "id": f"order_fake{len(self.created_orders) + 1:06d}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
        }
        self.created_orders.append(gateway_order)
        return dict(gateway_order)

    def record_payment(
        self,
        payment_id: str,
        gateway_order_id: str,
        amount: int,
        currency: str = "INR",
        status: str = "captured",
    ) -> Dict:
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": gateway_order_id,
            "amount": amount,
            "currency": currency,
            "status": status,
        }
        return self.payments[payment_id]

    def fetch_payment(self, payment_id: str) -> Dict:
        self.fetched.append(payment_id)
        hook, self.before_fetch = self.before_fetch, None
        if hook is not None:
            hook()
        if payment_id not in self.payments:
            raise GatewayError()
        return dict(self.payments[payment_id])


@pytest.fixture
def store() -> Store:
    return Store(mongomock.MongoClient().get_database("shopfront_test"))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app(store, gateway):
    return create_app(
        config={
            "TESTING": True,
            "JWT_SECRET_KEY": "jwt-secret-for-tests-0123456789abcdef",
            "ADMIN_SECRET": ADMIN_SECRET,
            "GOOGLE_CLIENT_ID": GOOGLE_CLIENT_ID,
            "RESEND_API_KEY": "",
            "TRUSTED_PROXY_HOPS": 0,
            "LOG_LEVEL": "DEBUG",
        },
        store=store,
        gateway=gateway,
    )


@pytest.fixture
def client(app):
    return app.test_client()


def insert_user(
    store,
    name: str = "Asha Rao",
    email: str = "asha@example.com",
    phone: str = "9000000001",
    password: str = "secret123",
    role: str = "standard",
) -> Dict:
    user_document = {
        "name": name,
        "email": email,
        "phone": phone,
        "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
        "auth_type": "local",
        "role": role,
        "wishlist": [],
        "cart": [],
        "orders": [],
        "created_at": datetime.utcnow(),
    }
    user_document["_id"] = store.users.insert_one(user_document).inserted_id
    return user_document


@pytest.fixture
def user(store) -> Dict:
    return insert_user(store)


@pytest.fixture
def other_user(store) -> Dict:
    return insert_user(store, name="Ravi Kumar", email="ravi@example.com", phone="9000000002")


@pytest.fixture
def auth_headers(app) -> Callable[[Dict], Dict[str, str]]:
    def build(user_document: Dict) -> Dict[str, str]:
        with app.app_context():
            token = create_access_token(identity=str(user_document["_id"]))
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def products(store) -> Dict[str, Dict]:
    documents = {
        "shirt": {
            "name": "Linen Shirt",
            "slug": "linen-shirt",
            "brand": "Loom",
            "images": ["https://cdn.example.com/linen-shirt.jpg"],
            "sizes": ["S", "M", "L"],
            "colors": ["White", "Blue"],
            "description": "Breathable linen shirt",
            "gender": "Men",
            "category": "Shirt",
            "subcategory": "Casual",
            "price": 700,
            "offerprice": 500,
            "rating": 4.2,
            "stock": 25,
            "created_at": datetime(2024, 1, 1),
        },
        "tee": {
            "name": "Cotton Tee",
            "slug": "cotton-tee",
            "brand": "Basics",
            "images": ["https://cdn.example.com/cotton-tee.jpg"],
            "sizes": ["M", "L"],
            "colors": ["Black"],
            "description": "Everyday cotton t-shirt",
            "gender": "Unisex",
            "category": "T-Shirt",
            "subcategory": "Casual",
            "price": 300,
            "offerprice": 0,
            "rating": 3.9,
            "stock": 40,
            "created_at": datetime(2024, 1, 2),
        },
        "dress": {
            "name": "Silk Dress",
            "slug": "silk-dress",
            "brand": "Loom",
            "images": [],
            "sizes": ["S"],
            "colors": ["Red"],
            "description": "Evening dress",
            "gender": "Women",
            "category": "Dress",
            "subcategory": "Party",
            "price": 2500,
            "offerprice": 1999.5,
            "rating": 4.8,
            "stock": 5,
            "created_at": datetime(2024, 1, 3),
        },
    }
    for document in documents.values():
        document["_id"] = store.products.insert_one(document).inserted_id
    return documents


def order_items(products: Dict[str, Dict]) -> List[Dict]:
    return [
        {"productId": str(products["shirt"]["_id"]), "quantity": 2, "size": "M", "color": "Blue"},
        {"productId": str(products["tee"]["_id"]), "quantity": 1, "size": "L"},
    ]


@pytest.fixture
def placed_order(store, user, products) -> Dict:
    """Pending order worth 1300.00 INR (500 x 2 + 300 x 1)."""
    return place_order(
        store, user, {"items": order_items(products), "address": SHIPPING_ADDRESS}, "INR"
    )
