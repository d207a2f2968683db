# tests/conftest.py

"""
Shared fixtures. Tests run against an in-memory SQLite database; the URL is
set before the package is imported so that db.py builds its engine on it.
Tables are dropped and recreated for every test.
"""

import logging
import os
from datetime import date

os.environ["DATABASE_URL"] = "sqlite://"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from shop_service import store  # noqa: E402
from shop_service.db import Base, SessionLocal, engine  # noqa: E402
from shop_service.main import app  # noqa: E402

# Suppress noisy logs from SQLAlchemy/FastAPI during tests for cleaner output
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("shop_service.main").setLevel(logging.WARNING)


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    """A session on the freshly created tables, closed after the test."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    """
    A TestClient for the FastAPI application. Entering it runs the startup
    event, which is a no-op here because the tables already exist.
    """
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def catalog(db):
    """One category with two products and one customer."""
    books = store.create_category(db, "Books")
    novel = store.create_product(db, "Novel", "12.50", stock_quantity=10, category_id=books.id)
    atlas = store.create_product(db, "Atlas", "40.00", stock_quantity=3, category_id=books.id)
    alice = store.register_customer(db, "Alice", "Smith", "alice@example.com", "s3cret-pass")
    return {"category": books, "novel": novel, "atlas": atlas, "alice": alice}


@pytest.fixture
def today():
    return date(2024, 3, 15)
