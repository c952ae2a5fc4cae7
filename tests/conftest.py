"""Shared test fixtures for all test modules."""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from lostfound.db.db import build_engine, get_session, init_db
from lostfound.main import app
from lostfound.models.enums import AppRole, ItemStatus, ItemType
from lostfound.models.item import Item
from lostfound.services.accounts import register_account
from lostfound.utils import change_feed, storage_service
from lostfound.utils.auth_helper import create_access_token


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection, fresh for each test."""
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as db:
        yield db


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as db:
            yield db

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def fresh_change_feed(monkeypatch):
    monkeypatch.setattr(change_feed, "_change_feed", None)


class FakeS3:
    def __init__(self):
        self.uploads = []
        self.deleted = []

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        self.uploads.append((bucket, key, fileobj.read(), ExtraArgs))

    def delete_object(self, Bucket, Key):
        self.deleted.append((Bucket, Key))


@pytest.fixture
def fake_s3(monkeypatch):
    fake = FakeS3()
    monkeypatch.setattr(storage_service, "get_s3_client", lambda: fake)
    return fake


@pytest.fixture
def make_user(session):
    """Register an account; returns its profile."""

    def _make(email, username=None, full_name=None, role=AppRole.USER):
        _, profile = register_account(session, email, username=username, full_name=full_name)
        if role != AppRole.USER:
            profile.role = role
            session.add(profile)
            session.commit()
            session.refresh(profile)
        return profile

    return _make


@pytest.fixture
def headers_for():
    def _headers(profile):
        token = create_access_token(profile.id, "user")
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_item(session):
    def _make(owner, title="Blue Backpack", item_type=ItemType.FOUND,
              status=ItemStatus.ACTIVE, **fields):
        item = Item(
            user_id=owner.id,
            title=title,
            description=fields.pop("description", "A blue backpack with a laptop sleeve"),
            category=fields.pop("category", "Bags"),
            location=fields.pop("location", "Main library"),
            type=item_type,
            status=status,
            **fields,
        )
        session.add(item)
        session.commit()
        session.refresh(item)
        return item

    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice@example.com")


@pytest.fixture
def bob(make_user):
    return make_user("bob@example.com")


@pytest.fixture
def carol(make_user):
    return make_user("carol@example.com")


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@example.com", username="admin", role=AppRole.ADMIN)


@pytest.fixture
def random_id():
    return uuid.uuid4()
