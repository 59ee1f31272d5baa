import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from content import create_product
from database import MemoryStore, get_store
from main import app
from schemas import POSTS, USERS, Review

BASE_DATE = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _headers_for(store, role):
    user_id = store.create_document(
        USERS,
        {"username": role, "email": f"{role}@example.com", "password_hash": "unused", "role": role},
    )
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture()
def admin_headers(store):
    return _headers_for(store, "administrator")


@pytest.fixture()
def editor_headers(store):
    return _headers_for(store, "editor")


@pytest.fixture()
def subscriber_headers(store):
    return _headers_for(store, "subscriber")


@pytest.fixture()
def make_review(store):
    """Insert a review directly; each one is dated a day after the previous."""
    counter = itertools.count()

    def _make(
        title="Solid kettle",
        content="Boils fast.",
        rating=None,
        reviewer_name="Alex",
        product_id=None,
        status="publish",
        categories=(),
        tags=(),
        thumbnail=None,
    ):
        n = next(counter)
        review = Review(
            title=title,
            content=content,
            slug=f"review-{n}",
            status=status,
            date=BASE_DATE + timedelta(days=n),
            thumbnail=thumbnail,
            categories=list(categories),
            tags=list(tags),
            meta={"product_id": product_id, "rating": rating, "reviewer_name": reviewer_name},
        )
        return store.create_document(POSTS, review)

    return _make


@pytest.fixture()
def make_product(store):
    def _make(title="Kettle", status="publish"):
        return create_product(store, title, status)

    return _make
