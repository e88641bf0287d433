"""
pytest Fixtures for ReadAlong API Tests

Shared fixtures used across all test files.

For database tests, we use:
- session scope for the engine (expensive to create)
- function scope for sessions: each test runs inside a transaction that
  is rolled back afterwards, so service code can commit freely.

Every test also gets a fresh ConnectionManager so WebSocket rooms never
leak between tests.
"""

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# IMPORTANT: Set environment variables BEFORE importing the app
# This disables rate limiting and sets a test secret key
import os

os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-at-least-32-characters-long"

from collections.abc import Generator
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from readalong.database import Base, get_db, get_session_factory
from readalong.main import app
from readalong.models import Book, ReadingGroup, User
from readalong.services import membership
from readalong.services import websocket as websocket_service
from readalong.services.security import create_access_token
from readalong.services.websocket import ConnectionManager

# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def engine():
    """
    Create a SQLite in-memory database engine.

    StaticPool keeps the single connection alive for the entire session;
    without it the in-memory database would disappear between connections.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """
    Create a fresh database session for each test.

    Changes are rolled back after each test. The session joins the outer
    transaction, so commits inside the test never reach the database.
    """
    TestSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )

    connection = engine.connect()
    transaction = connection.begin()
    session = TestSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(autouse=True)
def connection_manager(monkeypatch) -> ConnectionManager:
    """Replace the process-wide ConnectionManager with an empty one."""
    manager = ConnectionManager()
    monkeypatch.setattr(websocket_service, "manager", manager)
    return manager


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """
    Create a test client with the test database.

    We override the get_db dependency to use our test session.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Session cleanup handled by db_session fixture

    @contextmanager
    def use_test_session():
        # The WebSocket channel opens a session per command; share ours
        # and leave closing to the db_session fixture.
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: use_test_session

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================


def make_user(db: Session, email: str, first_name: str, last_name1: str) -> User:
    user = User(email=email, first_name=first_name, last_name1=last_name1)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def alice(db_session: Session) -> User:
    """Group creator in most scenarios."""
    return make_user(db_session, "alice@example.com", "Alice", "Moreno")


@pytest.fixture
def bob(db_session: Session) -> User:
    return make_user(db_session, "bob@example.com", "Bob", "Serrano")


@pytest.fixture
def carol(db_session: Session) -> User:
    return make_user(db_session, "carol@example.com", "Carol", "Vidal")


@pytest.fixture
def outsider(db_session: Session) -> User:
    """A user who never joins the sample group."""
    return make_user(db_session, "dave@example.com", "Dave", "Pons")


@pytest.fixture
def sample_book(db_session: Session) -> Book:
    book = Book(
        title="Dune",
        authors="Frank Herbert",
        isbn="9780441172719",
        page_count=612,
    )
    db_session.add(book)
    db_session.commit()
    db_session.refresh(book)
    return book


@pytest.fixture
def sample_group(db_session: Session, alice: User, sample_book: Book) -> ReadingGroup:
    """Public group created by alice (sole admin, sole member)."""
    return membership.create_group(
        db_session,
        creator_id=alice.id,
        name="Arrakis Book Club",
        book_id=sample_book.id,
        description="Desert power, one chapter at a time",
    )


@pytest.fixture
def full_group(
    db_session: Session,
    sample_group: ReadingGroup,
    bob: User,
    carol: User,
) -> ReadingGroup:
    """sample_group with members [alice(admin), bob(member), carol(member)]."""
    membership.join_group(db_session, sample_group.id, bob.id)
    membership.join_group(db_session, sample_group.id, carol.id)
    return sample_group


@pytest.fixture
def private_group(db_session: Session, bob: User, sample_book: Book) -> ReadingGroup:
    """Private group created by bob."""
    return membership.create_group(
        db_session,
        creator_id=bob.id,
        name="Bob's Secret Circle",
        book_id=sample_book.id,
        is_private=True,
    )


# =============================================================================
# AUTH HELPERS
# =============================================================================


def get_auth_token(user: User) -> str:
    """Generate an access token for a user."""
    return create_access_token({"sub": str(user.id), "role": user.role})


def get_auth_header(user: User) -> dict[str, str]:
    """Authorization header for a user."""
    return {"Authorization": f"Bearer {get_auth_token(user)}"}


def assert_admin_invariant(group: ReadingGroup) -> None:
    """A group with members always has at least one admin."""
    if group.members:
        assert len(group.admins) >= 1
