import os
from datetime import datetime, timezone
import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from lending.main import app, get_db
from lending.models import Base, Book, Copy, CopyStatus, Library, Loan, User
from lending.crud import create_book, create_copy, create_library, create_user_record
from lending.schemas import BookCreate, CopyCreate, LibraryCreate, UserCreate
from dotenv import load_dotenv

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DB_URL", "sqlite:///./test.db")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function", autouse=True)
def create_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def other_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="module")
def client():
    app.state.testing = True

    def override_get_db():
        try:
            db = TestingSessionLocal()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture(scope="function")
def test_user(db_session):
    return create_user_record(db_session, UserCreate(email="a@x.com", name="Ada"))


@pytest.fixture(scope="function")
def test_book(db_session):
    return create_book(db_session, BookCreate(title="Dune", author="Frank Herbert"))


@pytest.fixture(scope="function")
def test_library(db_session):
    return create_library(db_session, LibraryCreate(slug="central", name="Central"))


@pytest.fixture(scope="function")
def test_copy(db_session, test_book, test_library):
    return create_copy(
        db_session, CopyCreate(book_id=test_book.id, library_slug=test_library.slug)
    )


# Detached model graph for service tests against a mocked store


@pytest.fixture
def user():
    return User(id=7, email="a@x.com")


@pytest.fixture
def copy():
    return Copy(
        id=1,
        status=CopyStatus.AVAILABLE,
        book=Book(id=42, title="Dune", author="Frank Herbert"),
        library=Library(slug="central", name="Central"),
    )


@pytest.fixture
def loan(copy, user):
    return Loan(
        id=9,
        copy=copy,
        user=user,
        start_date=datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        end_date=None,
    )


@pytest.fixture
def store(copy, user, loan):
    store = MagicMock()
    store.find_copy_by_id.return_value = copy
    store.find_available_copies.return_value = [copy]
    store.find_users_by_email.return_value = [user]
    store.find_loan_by_id.return_value = loan

    def close_loan(loan, end_date):
        loan.end_date = end_date
        return True

    store.close_loan.side_effect = close_loan
    return store
