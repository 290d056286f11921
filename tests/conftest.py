"""Shared fixtures: app built through create_app on in-memory SQLite."""

import hashlib
import hmac
import itertools
import json
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from multimart.config import Settings
from multimart.gateway import RazorpayClient
from multimart.main import create_app
from multimart.models import (
    Address,
    Cart,
    CartItem,
    Product,
    ProductVariant,
    User,
    UserRole,
)
from multimart.security import create_token
from multimart.utils.email import Mailer

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
ADMIN_EMAIL = "admin@multimart.test"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
class RecordingMailer(Mailer):
    """Mailer that keeps messages in memory instead of calling Mailgun."""

    def __init__(self, settings):
        super().__init__(settings)
        self.sent = []

    def send_email(self, to_email, subject, html_content, text_content=None):
        self.sent.append(
            {"to": to_email, "subject": subject, "html": html_content, "text": text_content}
        )
        return True


class FakeRazorpay:
    """httpx transport handler standing in for the Razorpay REST API."""

    def __init__(self):
        self.orders = {}
        self.requests = []
        self._ids = itertools.count(1)
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"error": {"description": "boom"}})

        path = request.url.path
        if request.method == "POST" and path.endswith("/orders"):
            payload = json.loads(request.content)
            order_id = f"order_test_{next(self._ids)}"
            self.orders[order_id] = payload
            return httpx.Response(
                200,
                json={
                    "id": order_id,
                    "amount": payload["amount"],
                    "currency": payload["currency"],
                    "receipt": payload["receipt"],
                    "status": "created",
                },
            )

        if request.method == "GET" and "/payments/" in path:
            payment_id = path.rsplit("/", 1)[-1]
            return httpx.Response(
                200, json={"id": payment_id, "method": "upi", "status": "captured"}
            )

        return httpx.Response(404, json={"error": {"description": "not found"}})


def sign(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------
def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        secret_key="test-secret-key",
        cookie_secure=False,
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        admin_email=ADMIN_EMAIL,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


class AppHarness:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.razorpay = FakeRazorpay()
        self.gateway = RazorpayClient(
            KEY_ID,
            KEY_SECRET,
            base_url="https://api.razorpay.test/v1",
            transport=httpx.MockTransport(self.razorpay),
        )
        self.mailer = RecordingMailer(settings)
        self.app = create_app(settings, gateway=self.gateway, mailer=self.mailer)

    def session(self):
        return self.app.state.session_factory()


@pytest.fixture()
def harness_factory():
    """Build an app (and started client) with custom settings."""
    opened = []

    def build(**overrides):
        harness = AppHarness(make_settings(**overrides))
        client = TestClient(harness.app)
        client.__enter__()
        harness.client = client
        opened.append(client)
        return harness

    yield build

    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture()
def harness(harness_factory):
    return harness_factory()


@pytest.fixture()
def client(harness):
    return harness.client


@pytest.fixture()
def settings(harness):
    return harness.settings


@pytest.fixture()
def db(harness):
    session = harness.session()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
_emails = itertools.count(1)


def make_user(db, role=UserRole.buyer, email=None, name="Test User", contact="9876543210"):
    user = User(
        email=email or f"user{next(_emails)}@multimart.test",
        name=name,
        contact_number=contact,
        role=role,
        is_active=True,
        is_approved=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_address(db, user):
    address = Address(
        user_id=user.id,
        full_name=user.name or "Buyer",
        contact_number="9876543210",
        address_line1="12 MG Road",
        city="Bengaluru",
        state="KA",
        postal_code="560001",
        country="India",
        is_default=True,
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


def make_product(db, seller, price="100.00", stock=5, name="Widget", is_active=True):
    product = Product(
        seller_id=seller.id,
        name=name,
        description=f"{name} description",
        price=Decimal(price),
        stock=stock,
        is_active=is_active,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def make_variant(db, product, name="Large", price=None, stock=5):
    variant = ProductVariant(
        product_id=product.id,
        name=name,
        sku=f"SKU-{product.id}-{name}",
        price=Decimal(price) if price is not None else None,
        stock=stock,
        is_active=True,
    )
    db.add(variant)
    db.commit()
    db.refresh(variant)
    return variant


def fill_cart(db, user, product, quantity, variant=None):
    cart = db.query(Cart).filter(Cart.user_id == user.id).first()
    if not cart:
        cart = Cart(user_id=user.id)
        db.add(cart)
        db.flush()
    price = variant.price if variant is not None and variant.price is not None else product.price
    db.add(CartItem(
        cart_id=cart.id,
        product_id=product.id,
        variant_id=variant.id if variant is not None else None,
        quantity=quantity,
        price=price,
    ))
    db.commit()
    return cart


def auth_headers(settings, user):
    token = create_token(settings, user.id, user.role.value)
    return {"Authorization": f"Bearer {token}"}
