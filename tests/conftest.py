import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import security
from database import create_document, get_db, parse_object_id
from main import app
from payments import ChainVerification, MockChainVerifier
from schemas import Category, Product, ProductImage, Role, User

ADDRESS = {
    "full_name": "Meera Iyer",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip_code": "560001",
    "country": "India",
}


class FakeRazorpay:
    key_id = "rzp_test_key"
    configured = True

    def __init__(self):
        self.calls = []

    async def create_order(self, amount_paise, receipt, currency="INR"):
        self.calls.append((amount_paise, receipt, currency))
        return {"id": f"order_TEST{len(self.calls)}", "amount": amount_paise, "currency": currency}


class FakePriceFeed:
    def __init__(self, price=250000.0):
        self.price = price

    async def eth_price_in_inr(self):
        return self.price


class RejectingVerifier:
    name = "rejecting"

    def __init__(self, message="Transaction failed on blockchain"):
        self.message = message
        self.calls = 0

    async def verify(self, tx_hash, recipient):
        self.calls += 1
        return ChainVerification(verified=False, message=self.message, transaction_hash=tx_hash)


@pytest.fixture(scope="session")
def password_hash():
    return security.hash_password("Secret@123")


@pytest.fixture
def db():
    return mongomock.MongoClient()["jewelry_test"]


@pytest.fixture
def client(db):
    security.rate_store.clear()
    app.dependency_overrides[get_db] = lambda: db
    app.state.chain_verifier = MockChainVerifier(delay=0)
    app.state.razorpay = FakeRazorpay()
    app.state.price_feed = FakePriceFeed()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, password_hash):
    def _make(email="meera@aggems.in", role=Role.USER, **extra):
        user = User(
            first_name=extra.pop("first_name", "Meera"),
            last_name=extra.pop("last_name", "Iyer"),
            email=email,
            password_hash=password_hash,
            role=role,
            **extra,
        )
        user_id = create_document(db, "user", user)
        token = security.create_access_token(user_id, Role(role).value)
        return {"_id": parse_object_id(user_id), "headers": {"Authorization": f"Bearer {token}"}, "token": token}
    return _make


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def other_customer(make_user):
    return make_user(email="arjun@aggems.in", first_name="Arjun")


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@aggems.in", role=Role.ADMIN)


@pytest.fixture
def category(db):
    return parse_object_id(create_document(db, "category", Category(name="Rings", slug="rings", order=1)))


@pytest.fixture
def make_product(db, category):
    def _make(name="Solitaire Diamond Ring", price=10000, stock=10, **extra):
        product = Product(
            name=name,
            description=extra.pop("description", f"{name} in 18K gold"),
            price=price,
            stock=stock,
            category=extra.pop("category", category),
            images=[ProductImage(url=f"/{name.lower().replace(' ', '-')}.png", is_primary=True)],
            **extra,
        )
        return parse_object_id(create_document(db, "product", product))
    return _make


@pytest.fixture
def place_order(client, customer):
    def _place(product_id, quantity=1, payment_method="card", user=None):
        res = client.post(
            "/api/orders",
            json={
                "items": [{"product": str(product_id), "quantity": quantity}],
                "shipping_address": ADDRESS,
                "payment_method": payment_method,
            },
            headers=(user or customer)["headers"],
        )
        assert res.status_code == 201, res.json()
        return res.json()["order"]
    return _place
