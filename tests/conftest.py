"""Shared fixtures: in-memory SQLite, a fresh memory cart store and a seeded catalogue."""

import os

# settings are read at import time
os.environ["POSTGRES_DSN"] = "sqlite+pysqlite:///:memory:"
os.environ["CART_BACKEND"] = "memory"
os.environ["CART_SNAPSHOT_PATH"] = ""
os.environ["KAFKA_ENABLED"] = "false"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from storefront.db.models import Product, ProductVariant, User
from storefront.db.session import Base, SessionLocal, engine
from storefront.main import app
from storefront.security.utils import create_access_token, hash_password
from storefront.store.cart_store import CartStore, MemoryCartBackend

GUEST_TOKEN = "guest-session-0001"


@pytest.fixture()
def db():
    Base.metadata.create_all(engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture()
def store():
    cart_store = CartStore(MemoryCartBackend())
    app.state.cart_store = cart_store
    return cart_store


@pytest.fixture()
def client(db, store):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def catalog(db):
    """Widget 10.00; Shirt 20.00 with Large at 15.00 and Small at the product price; Retired is inactive."""
    widget = Product(title="Widget", sku="WID-1", price_cents=1000)
    shirt = Product(title="Shirt", sku="SHI-1", price_cents=2000)
    large = ProductVariant(name="Large", sku="SHI-1-L", price_cents=1500)
    small = ProductVariant(name="Small", sku="SHI-1-S", price_cents=None)
    shirt.variants = [large, small]
    retired = Product(title="Retired", sku="RET-1", price_cents=500, active=False)
    db.add_all([widget, shirt, retired])
    db.commit()
    return SimpleNamespace(
        widget=widget.id, shirt=shirt.id, large=large.id, small=small.id, retired=retired.id,
    )


def _make_user(db, email, name, role):
    user = User(email=email, name=name, password_hash=hash_password("password123"), role=role)
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def customer(db):
    return _make_user(db, "alice@example.com", "Alice Smith", "customer")


@pytest.fixture()
def admin(db):
    return _make_user(db, "admin@example.com", "Admin", "admin")


def bearer(user):
    token, _ = create_access_token(user.email, user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture()
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture()
def guest_headers():
    return {"X-Guest-Session": GUEST_TOKEN}
