"""
Shared fixtures: a seeded SQLite file per test, the services wired on top of
it and a TestClient for the HTTP layer.
"""
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from campus_orders.application.payments import build_gateways
from campus_orders.application.role_applications import RoleApplicationService
from campus_orders.application.scheduler import ExpiryScheduler
from campus_orders.application.schemas import OrderCreate
from campus_orders.application.service import OrderService
from campus_orders.core_settings import Settings
from campus_orders.domain.models import Base, Shop, User
from campus_orders.infrastructure.account_store import AccountStore
from campus_orders.infrastructure.auth import Identity, create_access_token
from campus_orders.infrastructure.db import Database
from campus_orders.infrastructure.notifier import Notifier
from campus_orders.infrastructure.order_store import OrderStore
from campus_orders.main import create_app

CUSTOMER_ID = 1
SHOP_OWNER_ID = 2
COURIER_ID = 3
POOR_CUSTOMER_ID = 4
OTHER_OWNER_ID = 5
ADMIN_ID = 9

SHOP_ID = 1
OTHER_SHOP_ID = 2


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "orders.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add_all([
            User(id=CUSTOMER_ID, nickname="alice", balance=100),
            User(id=SHOP_OWNER_ID, nickname="noodle owner", balance=0),
            User(id=COURIER_ID, nickname="courier", balance=0, is_delivery=True),
            User(id=POOR_CUSTOMER_ID, nickname="bob", balance=5),
            User(id=OTHER_OWNER_ID, nickname="dumpling owner", balance=0),
        ])
        session.flush()
        session.add_all([
            Shop(id=SHOP_ID, name="Noodle House", owner_id=SHOP_OWNER_ID),
            Shop(id=OTHER_SHOP_ID, name="Dumpling Corner", owner_id=OTHER_OWNER_ID),
        ])
        session.commit()
    engine.dispose()
    return path


@pytest.fixture
def sync_db(db_path):
    """Synchronous session factory for arranging and inspecting rows directly"""
    engine = create_engine(f"sqlite:///{db_path}")
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def settings(db_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{db_path}",
        JWT_SECRET="test-secret",
        ALLOW_DEV_TOKENS=True,
        ORDER_SWEEP_ENABLED=False,
        WECHAT_PAY_SANDBOX=True,
        WECHAT_NOTIFY_TOKEN="notify-secret",
        NOTIFY_WEBHOOK_URL=None,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def database(settings):
    # NullPool: no connection outlives the event loop that opened it
    return Database(settings.DATABASE_URL, poolclass=NullPool)


@pytest.fixture
def services(settings, database):
    orders = OrderStore(database)
    accounts = AccountStore(database)
    notifier = Notifier(None)
    return SimpleNamespace(
        database=database,
        orders=orders,
        accounts=accounts,
        order_service=OrderService(database, orders, accounts, build_gateways(settings, accounts), notifier),
        role_service=RoleApplicationService(database, accounts),
        scheduler=ExpiryScheduler(orders, notifier, interval_seconds=60),
    )


@pytest.fixture
def client(settings, database):
    with TestClient(create_app(settings, database)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(settings):
    def make(user_id: int, role: str = "user", prefix: str = "Bearer "):
        token = create_access_token(user_id, name=f"user-{user_id}", role=role, settings=settings)
        return {"Authorization": f"{prefix}{token}"}
    return make


@pytest.fixture
def customer():
    return Identity(user_id=CUSTOMER_ID, name="alice")


@pytest.fixture
def shop_owner():
    return Identity(user_id=SHOP_OWNER_ID, name="noodle owner", role="shop")


@pytest.fixture
def courier():
    return Identity(user_id=COURIER_ID, name="courier")


def order_payload(**overrides):
    payload = {
        "shopId": SHOP_ID,
        "shopName": "Noodle House",
        "orderItems": [
            {"goodsId": "g-1", "goodsName": "Beef noodles", "price": 12.5, "quantity": 2, "subtotal": 25.0},
            {"goodsId": "g-2", "goodsName": "Iced tea", "price": 3, "quantity": 1, "subtotal": 3},
        ],
        "deliveryAddress": {"name": "Alice", "phone": "13800138000", "address": "Dorm 7, Room 402"},
        "deliveryType": 0,
        "goodsAmount": 28,
        "deliveryFee": 2,
        "couponAmount": 0,
        "totalAmount": 30,
        "remark": "no chili",
    }
    payload.update(overrides)
    return payload


def order_request(**overrides) -> OrderCreate:
    return OrderCreate.model_validate(order_payload(**overrides))
