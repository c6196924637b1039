"""Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database. Each test gets a session
bound to an outer transaction that is rolled back afterwards, so data
never leaks between tests; ``begin_nested()`` inside the code under test
maps onto SAVEPOINTs.
"""

import os

# Must be set before agencycrm builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from agencycrm.core.security import create_access_token
from agencycrm.db.base import Base
import agencycrm.db.models  # noqa: F401  (register tables on Base.metadata)
from tests import factories


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; take it over
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Session whose work is rolled back at the end of the test."""
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


# ---------------------------------------------------------------------------
# Factory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def agency_factory(db_session):
    def _create(**kwargs):
        return factories.create_agency(db_session, **kwargs)
    return _create


@pytest.fixture
def branch_factory(db_session):
    def _create(**kwargs):
        return factories.create_branch(db_session, **kwargs)
    return _create


@pytest.fixture
def user_factory(db_session):
    def _create(**kwargs):
        return factories.create_user(db_session, **kwargs)
    return _create


@pytest.fixture
def student_factory(db_session):
    def _create(**kwargs):
        return factories.create_student(db_session, **kwargs)
    return _create


@pytest.fixture
def role_factory(db_session):
    def _create(**kwargs):
        return factories.create_role(db_session, **kwargs)
    return _create


@pytest.fixture
def assignment_factory(db_session):
    def _create(**kwargs):
        return factories.assign_role(db_session, **kwargs)
    return _create


@pytest.fixture
def agency(agency_factory):
    return agency_factory(name="Globe Study Abroad", subdomain="globe")


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
def client(db_session):
    """TestClient whose requests share the test's session."""
    from agencycrm.api.deps import get_db
    from agencycrm.api.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a user."""
    def _headers(user):
        token = create_access_token(user.id, agency_id=user.agency_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
