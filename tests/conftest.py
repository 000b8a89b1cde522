import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from config import Settings
from database import PRODUCTS, USERS, create_document
from main import create_app
from security import hash_password, issue_token

PASSWORD = "secret123"


@pytest.fixture
def settings():
    return Settings(
        mongodb_uri="mongodb://localhost:27017",
        jwt_secret="test-secret",
        database_name="inventory_test",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["inventory_test"]


@pytest.fixture
def app(settings, db):
    return create_app(settings, db)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(PASSWORD)


@pytest.fixture
def make_user(db, settings, password_hash):
    counter = {"n": 0}

    def _make(role="customer", name=None):
        counter["n"] += 1
        name = name or f"{role}{counter['n']}"
        email = f"{name}@example.com"
        user_id = create_document(db, USERS, {
            "name": name,
            "email": email,
            "password_hash": password_hash,
            "role": role,
        })
        token = issue_token({"id": user_id, "email": email, "role": role}, settings.jwt_secret)
        return {
            "id": user_id,
            "email": email,
            "role": role,
            "token": token,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def customer(make_user):
    return make_user("customer")


@pytest.fixture
def make_product(db):
    def _make(quantity=5, price=2.5, name="Widget", category="Tools"):
        return create_document(db, PRODUCTS, {
            "name": name,
            "category": category,
            "description": f"A {name.lower()}",
            "price": price,
            "quantity": quantity,
        })

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        return db[PRODUCTS].find_one({"_id": ObjectId(product_id)})["quantity"]

    return _stock
