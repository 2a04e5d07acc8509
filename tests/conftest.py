import os
import tempfile

# Point the catalog at a temporary file database before any catalog module
# reads its settings.
_fd, _test_db_file = tempfile.mkstemp(suffix='.db')
os.close(_fd)
os.environ["CATALOG_DATABASE_URL"] = f"sqlite:///{_test_db_file}"
os.environ["CATALOG_LOG_FORMAT"] = "text"

import pytest
from fastapi.testclient import TestClient
from typing import Generator

from catalog import identity, schemas
from catalog.db import Base, SessionLocal, engine, get_db
from catalog.main import app
from catalog.service import CatalogService


@pytest.fixture(scope="function")
def db_session() -> Generator:
    """
    Create a fresh database session for each test.
    Creates tables, yields session, then drops tables.
    """
    # Drop all tables first to ensure clean state
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session) -> Generator:
    """
    Create a test client with database override.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def events():
    """
    Events published by the service fixture, in order.
    """
    return []


@pytest.fixture
def service(db_session, events):
    return CatalogService(db_session, publisher=lambda event, payload: events.append((event, payload)))


@pytest.fixture
def make_user(db_session):
    """
    Factory resolving an identity whose preferred username is ``name``.
    """
    def _make(name: str, user_id: str = None):
        return identity.resolve(
            db_session,
            schemas.AuthIdentity(id=user_id or f"{name}-id", user_name=name),
        )
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def make_document(service):
    """
    Factory creating a document through the catalog service.
    """
    def _make(owner, title="Test Document", tags=None, is_public=True,
              description=None, content="Some markdown content"):
        return service.create_document(
            owner.id,
            schemas.DocumentFields(
                title=title,
                description=description,
                content=content,
                is_public=is_public,
                tags=tags or [],
            ),
        )
    return _make


@pytest.fixture
def public_document(make_document, alice):
    """
    A public document owned by alice, tagged react and typescript.
    """
    return make_document(alice, title="React Hooks Guide", tags=["react", "typescript"],
                         description="Patterns for hooks")


@pytest.fixture
def private_document(make_document, alice):
    """
    A private document owned by alice.
    """
    return make_document(alice, title="Private Notes", tags=["notes"], is_public=False)


@pytest.fixture
def auth():
    """
    Builds the X-User-Id header for API calls.
    """
    def _headers(user):
        return {"X-User-Id": user.id}
    return _headers
