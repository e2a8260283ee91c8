"""Pytest configuration and fixtures."""

import os

# The application engine is created on import; keep it off the local database file
os.environ["DATABASE_URL"] = "sqlite://"

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from models.category import Category
from models.product import Product
from models.stock import StockSnapshot
from models.users import User
from utils.tokenJWT import create_access_token

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db: Session, email: str, role: str) -> User:
    user = User(email=email, role=role, first_name="Test", last_name=role.title())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_product(db: Session, owner: User, stock: int = 50, **fields) -> Product:
    """Product with a snapshot in sync, the way the products API creates them."""
    fields.setdefault("name", "Widget")
    fields.setdefault("price", 20.0)
    product = Product(user_id=owner.id, stock=stock, **fields)
    db.add(product)
    db.flush()
    db.add(StockSnapshot(product_id=product.id, current_stock=stock, version=0))
    db.commit()
    db.refresh(product)
    return product


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': user.email})}"}


@pytest.fixture
def test_user(db_session: Session) -> User:
    """Create a warehouse user owning the test products."""
    return _make_user(db_session, "warehouse@example.com", "WAREHOUSE")


@pytest.fixture
def other_user(db_session: Session) -> User:
    """A second tenant."""
    return _make_user(db_session, "other@example.com", "WAREHOUSE")


@pytest.fixture
def admin_user(db_session: Session) -> User:
    return _make_user(db_session, "admin@example.com", "ADMIN")


@pytest.fixture
def viewer_user(db_session: Session) -> User:
    return _make_user(db_session, "viewer@example.com", "VIEWER")


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Get authentication headers."""
    return headers_for(test_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return headers_for(other_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest.fixture
def test_category(db_session: Session) -> Category:
    category = Category(name="Tools", description="Hand tools")
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def test_product(db_session: Session, test_user: User) -> Product:
    """Create a product with 50 units in stock."""
    return make_product(db_session, test_user, stock=50, name="Hammer", price=20.0, cost=10.0, min_stock=10)
