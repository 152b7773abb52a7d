import os
from decimal import Decimal
from typing import Generator

# Override settings for tests before importing bookstore modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["OPAY_MERCHANT_ID"] = "256612345678901"
os.environ["OPAY_PUBLIC_KEY"] = "OPAYPUB_test_public"
os.environ["OPAY_SECRET_KEY"] = "OPAYPRV_test_secret"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bookstore.config import OPAY_SANDBOX_BASE_URL, PaymentConfig
from bookstore.dependencies import get_gateway_client
from bookstore.main import app
from bookstore.models import Book, DeliveryMethod, Order, User
from bookstore.models.database import Base, enable_sqlite_foreign_keys, get_db
from bookstore.models.user import ROLE_ADMIN, ROLE_STUDENT
from bookstore.services import order_ledger
from bookstore.services.opay_client import OPayClient
from bookstore.services.order_ledger import OrderLine
from tests.opay_fakes import FakeOPay

TEST_PASSWORD = "testpassword123"

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(test_engine)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def payment_config() -> PaymentConfig:
    return PaymentConfig(
        gateway_base_url=OPAY_SANDBOX_BASE_URL,
        merchant_id="256612345678901",
        public_key="OPAYPUB_test_public",
        secret_key="OPAYPRV_test_secret",
        callback_url="https://api.example.com/webhooks/opay",
        return_url="https://api.example.com/api/payments/return",
        delivery_fee=Decimal("500"),
        query_retries=2,
    )


@pytest.fixture
def opay() -> FakeOPay:
    return FakeOPay()


@pytest.fixture
def gateway(payment_config: PaymentConfig, opay: FakeOPay) -> Generator[OPayClient, None, None]:
    http_client = httpx.Client(transport=httpx.MockTransport(opay.handler))
    client = OPayClient(payment_config, http_client=http_client)
    yield client
    http_client.close()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db: Session, gateway: OPayClient) -> Generator[TestClient, None, None]:
    """Create a test client with database and gateway overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_user(db: Session, name: str, email: str, role: str = ROLE_STUDENT) -> User:
    from bookstore.api.auth import get_password_hash

    user = User(
        name=name,
        email=email,
        hashed_password=get_password_hash(TEST_PASSWORD),
        role=role,
        accommodation="Hall 3, Room 12",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def student(db: Session) -> User:
    return _create_user(db, "Ada Student", "student@example.com")


@pytest.fixture
def other_student(db: Session) -> User:
    return _create_user(db, "Bola Student", "other@example.com")


@pytest.fixture
def admin_user(db: Session) -> User:
    return _create_user(db, "Chidi Admin", "admin@example.com", role=ROLE_ADMIN)


@pytest.fixture
def books(db: Session) -> list[Book]:
    items = [
        Book(title="Calculus I", author="Stewart", price=Decimal("2500.00"), category="Textbook", stock=5),
        Book(title="Lab Manual", author="Okafor", price=Decimal("1200.50"), category="Manual", stock=1),
    ]
    db.add_all(items)
    db.commit()
    for book in items:
        db.refresh(book)
    return items


@pytest.fixture
def make_order(db: Session):
    def _make(user: User, lines: list[tuple[Book, int]], method: DeliveryMethod = DeliveryMethod.PICKUP) -> Order:
        order = order_ledger.create_order(
            db,
            user_id=user.id,
            lines=[OrderLine(book_id=book.id, quantity=quantity) for book, quantity in lines],
            delivery_address="Hall 3, Room 12",
            delivery_method=method,
            delivery_fee=Decimal("500"),
        )
        db.commit()
        db.refresh(order)
        return order

    return _make


def _login(client: TestClient, email: str) -> dict[str, str]:
    response = client.post("/api/auth/login", json={"email": email, "password": TEST_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def auth_headers(client: TestClient, student: User) -> dict[str, str]:
    return _login(client, student.email)


@pytest.fixture
def other_headers(client: TestClient, other_student: User) -> dict[str, str]:
    return _login(client, other_student.email)


@pytest.fixture
def admin_headers(client: TestClient, admin_user: User) -> dict[str, str]:
    return _login(client, admin_user.email)
