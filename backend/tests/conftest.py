from __future__ import annotations

import os

# Settings are read at import time; give the test run its own values.
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "postgres")
os.environ["ENVIRONMENT"] = "local"
os.environ["MTA_API_KEY"] = "test-mta-key"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ.pop("SMTP_HOST", None)

from collections.abc import Callable, Generator  # noqa: E402
from datetime import timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from storefront.api.deps import get_db  # noqa: E402
from storefront.core.security import AuthContext, create_access_token  # noqa: E402
from storefront.main import app  # noqa: E402
from storefront.models import (  # noqa: E402
    CartItem,
    DeliveryAttempt,
    Order,
    OrderItem,
    Product,
    User,
    WebhookEvent,
)
from storefront.services.fulfillment import FulfillmentService  # noqa: E402
from storefront.services.notifier import Notifier  # noqa: E402


class FakeRedis:
    """Collects XADD calls; set ``fail`` to make them raise"""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, str]]] = []
        self.fail = False

    def xadd(self, name: str, fields: dict[str, str]) -> str:
        if self.fail:
            import redis

            raise redis.ConnectionError("redis unavailable")
        self.messages.append((name, fields))
        return f"{len(self.messages)}-0"


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, *, to: str, subject: str, body: str) -> bool:
        self.sent.append((to, subject))
        return True


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(WebhookEvent))
        session.exec(delete(DeliveryAttempt))
        session.exec(delete(OrderItem))
        session.exec(delete(Order))
        session.exec(delete(CartItem))
        session.exec(delete(Product))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr("storefront.services.delivery_gateway.get_redis", lambda: fake)
    return fake


@pytest.fixture
def notifier(monkeypatch) -> RecordingNotifier:
    recorder = RecordingNotifier()
    monkeypatch.setattr("storefront.api.deps.get_notifier", lambda: recorder)
    return recorder


@pytest.fixture
def service(db, notifier) -> FulfillmentService:
    return FulfillmentService(db, notifier=notifier)


@pytest.fixture(scope="function")
def client(engine, notifier) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(*, is_admin: bool = False) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            serial=f"SERIAL{n:04d}{'A' if is_admin else 'U'}",
            email=f"{'admin' if is_admin else 'player'}{n}@example.com",
            is_admin=is_admin,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_product(db) -> Callable[..., Product]:
    def _make(*, name: str = "Legendary Cars Pack", stock: int = 10, price: str = "24.99") -> Product:
        product = Product(
            name=name,
            description="",
            price=Decimal(price),
            category="vehicles",
            mta_item_type="item",
            mta_item_data='{"type": "vehicle_pack"}',
            stock=stock,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def customer(make_user) -> User:
    return make_user()


@pytest.fixture
def admin(make_user) -> User:
    return make_user(is_admin=True)


@pytest.fixture
def auth_for() -> Callable[[User], AuthContext]:
    def _auth(user: User) -> AuthContext:
        return AuthContext(user_id=user.id, is_admin=user.is_admin)

    return _auth


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, timedelta(minutes=30))
        return {"Authorization": f"Bearer {token}"}

    return _headers
