"""
pytest Fixtures for Book Review API Tests

Shared fixtures used across all test files.

For database tests, we use:
- session scope for the engine (expensive to create)
- function scope for sessions (each test runs inside a transaction that is
  rolled back afterwards)

Storage-failure paths are tested with mocked sessions instead: a real
rollback inside a test would also discard the surrounding test transaction.
"""

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# Set environment variables BEFORE importing the app
import os

os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-at-least-32-characters-long"

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bookreview.database import Base, get_db
from bookreview.main import app
from bookreview.models import Book, Review, User
from bookreview.services.ratings import refresh_book_rating
from bookreview.services.security import create_access_token, hash_password


# =============================================================================
# DATABASE FIXTURES
# =============================================================================
# SQLite in-memory: no external database needed. FOR UPDATE is ignored by
# SQLite; the partial unique index on reviews is supported.


@pytest.fixture(scope="session")
def engine():
    """
    Create a SQLite in-memory database engine.

    StaticPool keeps the single connection alive for the whole session,
    otherwise the in-memory database would disappear between connections.
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

    The session joins an outer transaction that's rolled back at the end,
    so session.commit() in the code under test never persists across tests.
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


@pytest.fixture(scope="function")
def file_engine(tmp_path) -> Generator:
    """
    A SQLite database file that several sessions can open at once.

    Used where two independent transactions must really commit or roll
    back, which the shared in-memory connection above cannot do.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'reviews.db'}")
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Test client whose requests use the test database session."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Session cleanup handled by db_session fixture

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# HELPERS
# =============================================================================


def get_auth_header(user: User) -> dict:
    """Create authorization header for a user."""
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


def make_user(db_session: Session, username: str, password: str = "SecurePass123") -> User:
    """Create and commit an active user."""
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=hash_password(password),
        first_name=username.capitalize(),
        last_name="Tester",
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def make_book(db_session: Session, owner: User, title: str = "1984", **fields) -> Book:
    """Create and commit an active book owned by `owner`."""
    values = {
        "author": "George Orwell",
        "genre": "Dystopian",
        "description": "A dystopian novel set in a totalitarian society.",
        "publish_year": 1949,
        "pages": 328,
    }
    values.update(fields)
    book = Book(title=title, owner_id=owner.id, **values)
    db_session.add(book)
    db_session.commit()
    db_session.refresh(book)
    return book


def add_review(
    db_session: Session,
    book: Book,
    user: User,
    rating: int,
    comment: str = "A thoughtful and memorable read.",
    is_active: bool = True,
) -> Review:
    """Insert a review directly and bring the book's aggregate up to date."""
    review = Review(
        book_id=book.id,
        user_id=user.id,
        rating=rating,
        comment=comment,
        is_active=is_active,
    )
    db_session.add(review)
    db_session.flush()
    refresh_book_rating(db_session, book.id)
    db_session.refresh(review)
    return review


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================


@pytest.fixture
def sample_user(db_session: Session) -> User:
    """Create a sample user for testing."""
    return make_user(db_session, "testuser")


@pytest.fixture
def second_user(db_session: Session) -> User:
    """Create a second user for testing ownership scenarios."""
    return make_user(db_session, "seconduser", password="SecurePass456")


@pytest.fixture
def third_user(db_session: Session) -> User:
    return make_user(db_session, "thirduser")


@pytest.fixture
def sample_book(db_session: Session, sample_user: User) -> Book:
    """Create a sample book owned by sample_user."""
    return make_book(db_session, sample_user)


@pytest.fixture
def multiple_books(db_session: Session, sample_user: User) -> list[Book]:
    """Create multiple books for pagination testing."""
    books = []
    for i in range(15):  # More than default page size
        books.append(
            make_book(
                db_session,
                sample_user,
                title=f"Test Book {i + 1}",
                author="Isaac Asimov" if i % 2 == 0 else "Ursula K. Le Guin",
                genre="Science Fiction" if i % 3 == 0 else "Fantasy",
                description=f"Description for test book number {i + 1}",
                publish_year=1950 + i,
            )
        )
    return books


@pytest.fixture
def sample_review(db_session: Session, sample_book: Book, second_user: User) -> Review:
    """A 4-star review of sample_book by second_user, aggregate refreshed."""
    return add_review(db_session, sample_book, second_user, rating=4)
