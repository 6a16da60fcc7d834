import os

# Cheap hashing and a throwaway database before the service modules read their settings
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SQLALCHEMY_DATABASE_URL", "sqlite:///./test.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from lending import crud
from lending.main import app, get_db
from lending.models import Base, Role
from lending.schemas import BookCreate, UserCreate
from lending.storage import build_engine

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OPERATOR_EMAIL = "librarian@example.com"
OPERATOR_PASSWORD = "operatorpassword"
MEMBER_EMAIL = "reader@example.com"
MEMBER_PASSWORD = "readerpassword"


@pytest.fixture(scope="session", autouse=True)
def create_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_operator(db_session):
    operator = UserCreate(
        username="librarian", email=OPERATOR_EMAIL, password=OPERATOR_PASSWORD
    )
    return crud.create_user_record(db_session, operator, role=Role.ADMIN, verified=True)


@pytest.fixture(scope="function")
def test_member(db_session):
    member = UserCreate(username="reader", email=MEMBER_EMAIL, password=MEMBER_PASSWORD)
    return crud.create_user_record(db_session, member, verified=True)


@pytest.fixture(scope="function")
def make_member(db_session):
    def _make_member(name: str, verified: bool = True):
        member = UserCreate(
            username=name, email=f"{name}@example.com", password="memberpassword"
        )
        return crud.create_user_record(db_session, member, verified=verified)

    return _make_member


@pytest.fixture(scope="function")
def make_book(db_session):
    def _make_book(quantity: int = 2, price: float = 12.5, title: str = "Test Book"):
        book = BookCreate(
            title=title,
            author="Test Author",
            description="Test Description",
            price=price,
            quantity=quantity,
        )
        return crud.create_book(db_session, book)

    return _make_book


@pytest.fixture(scope="function")
def test_book(make_book):
    return make_book(quantity=2)


@pytest.fixture(scope="session")
def session_local():
    return TestingSessionLocal


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


@pytest.fixture
def operator_auth(test_operator):
    return (OPERATOR_EMAIL, OPERATOR_PASSWORD)


@pytest.fixture
def member_auth(test_member):
    return (MEMBER_EMAIL, MEMBER_PASSWORD)
