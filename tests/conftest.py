"""Test configuration and fixtures."""

import os

# Keep the application's own engine off the working directory
os.environ.setdefault("DOCFLOW_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docflow import store
from docflow.database import Base, get_db
from docflow.identity import Identity
from docflow.models import Role
from docflow.routes import get_storage
from docflow.storage import LocalBlobStorage
from main import app

from tests.helpers import make_file_ref, make_meta


@pytest.fixture
def engine():
    """An in-memory SQLite database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalBlobStorage(tmp_path / "blobs", max_bytes=1024 * 1024)


@pytest.fixture
def client(db_session, storage):
    """Create a test client with overridden database and storage dependencies."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def owner():
    return Identity(user_id="owner-1", role=Role.CLIENT, email="owner@example.com")


@pytest.fixture
def other_client():
    return Identity(user_id="client-2", role=Role.CLIENT, email="client2@example.com")


@pytest.fixture
def approver():
    return Identity(user_id="approver-1", role=Role.APPROVER, email="approver@example.com")


@pytest.fixture
def admin():
    return Identity(user_id="admin-1", role=Role.ADMIN, email="admin@example.com")


@pytest.fixture
def pending_document(db_session, owner):
    return store.create_document(db_session, make_meta(), make_file_ref(), owner.user_id)


@pytest.fixture
def draft_document(db_session, owner):
    return store.create_draft(db_session, make_meta(title="Draft Policy"), owner.user_id)
