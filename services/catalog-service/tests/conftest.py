import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

_TMP = Path(tempfile.mkdtemp(prefix="catalog-tests-"))

# WAL keeps the fixture session's reads from blocking writes made through the client
_conn = sqlite3.connect(_TMP / "catalog.db")
_conn.execute("PRAGMA journal_mode=WAL")
_conn.close()

os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'catalog.db'}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["MEDIA_BACKEND"] = "local"
os.environ["MEDIA_ROOT"] = str(_TMP / "media")
os.environ["MEDIA_BASE_URL"] = "/static"
os.environ["EVENT_BACKEND"] = "none"
os.environ["ENABLE_CATEGORY_ADMIN_ROUTES"] = "true"
os.environ["ENABLE_PRODUCT_REQUESTS"] = "true"
os.environ["PRODUCT_DELETE_GUARD"] = "false"
for _name in ("JWT_ISSUER", "JWT_AUDIENCE", "DB_SCHEMA"):
    os.environ.pop(_name, None)

from fastapi.testclient import TestClient  # noqa: E402

from app.db import Base, SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Category, Product, User  # noqa: E402
from app.passwords import hash_password  # noqa: E402
from shared.security import create_access_token  # noqa: E402

MEDIA_ROOT = Path(os.environ["MEDIA_ROOT"])

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    shutil.rmtree(MEDIA_ROOT, ignore_errors=True)
    MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    # fixtures commit when done so later reads see what the client wrote
    session = SessionLocal(expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


def _make_user(db, email, is_admin, password="secret123"):
    user = User(email=email, password_hash=hash_password(password), is_admin=is_admin)
    db.add(user)
    db.commit()
    db.refresh(user)
    db.commit()
    return user


@pytest.fixture
def admin_user(db):
    return _make_user(db, "admin@example.com", True)


@pytest.fixture
def regular_user(db):
    return _make_user(db, "user@example.com", False)


@pytest.fixture
def admin_headers(admin_user):
    token = create_access_token(admin_user.id, admin_user.email, True)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(regular_user):
    token = create_access_token(regular_user.id, regular_user.email, False)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_category(db):
    def _make(name, is_active=True, description=None):
        category = Category(name=name, description=description, is_active=is_active)
        db.add(category)
        db.commit()
        db.refresh(category)
        db.commit()
        return category

    return _make


@pytest.fixture
def make_product(db):
    """Insert a product directly; created_at increases with each call."""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(name, price="1500", stock=5, categories=(), is_active=True, description=None, image=None):
        counter["n"] += 1
        stamp = base + timedelta(minutes=counter["n"])
        product = Product(
            name=name,
            description=description,
            price=Decimal(price),
            stock=stock,
            is_active=is_active,
            image=image,
            created_at=stamp,
            updated_at=stamp,
        )
        product.categories = list(categories)
        db.add(product)
        db.commit()
        db.refresh(product)
        db.commit()
        return product

    return _make


def stored_files():
    return sorted(str(p.relative_to(MEDIA_ROOT)) for p in MEDIA_ROOT.rglob("*") if p.is_file())
