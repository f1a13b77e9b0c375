import os
from datetime import datetime, timedelta

import mongomock
import pymongo
import pytest

# The app connects at import time, so the fake client and env must be in place first.
os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "boutique_test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_boutique"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_boutique"
os.environ["SITE_URL"] = "https://ballon-boutique.vercel.app"
for key in ("IMAGEKIT_URL_ENDPOINT", "IMAGEKIT_PUBLIC_KEY", "IMAGEKIT_PRIVATE_KEY", "LOG_FILE"):
    os.environ.pop(key, None)
pymongo.MongoClient = mongomock.MongoClient

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from auth import create_access_token, hash_password, rate_store  # noqa: E402
from database import create_document, db  # noqa: E402
from schemas import Product, User  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    rate_store.clear()
    yield


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def make_user():
    def _make(name="Anna Berger", email="anna@example.com", password="secret123", is_admin=False):
        user = User(name=name, email=email, password_hash=hash_password(password), is_admin=is_admin)
        user_id = create_document("user", user)
        return user_id, create_access_token({"sub": user_id})
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(name="Shop Admin", email="admin@example.com", is_admin=True)


@pytest.fixture
def auth():
    def _headers(token):
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def make_product():
    def _make(**overrides):
        data = {
            "name": "Classic Red Balloon",
            "description": "Classic red balloon for any celebration",
            "price": 3.0,
            "category_group": "for-any-event",
            "categories": ["Birthday"],
            "available_colors": ["red"],
            "stock": 10,
        }
        data.update(overrides)
        return create_document("product", Product(**data))
    return _make


@pytest.fixture
def pickup_date_time():
    return (datetime.now() + timedelta(days=5)).replace(hour=12, minute=0).strftime("%Y-%m-%dT%H:%M")
