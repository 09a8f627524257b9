import os

# before any cartsync import, settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("USER_LOCK_WAIT_SECONDS", "0.2")

from decimal import Decimal

import fakeredis
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cartsync.data.models  # noqa: F401
from cartsync.data.database import Base
from cartsync.data.models.cart import CartModel
from cartsync.data.models.product import ProductModel
from cartsync.services.cart_cache import CartCache
from cartsync.services.cart_service import CartService
from cartsync.services.lock_service import LockService



@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return CartCache(client=redis_client)


@pytest.fixture
def lock_service(redis_client):
    return LockService(client=redis_client)


@pytest.fixture
def cart_service(db, cache, lock_service):
    return CartService(db=db, cache=cache, lock_service=lock_service)


@pytest.fixture
def products(db):
    db.add_all(
        [
            ProductModel(id=1, name="Test Chips", price=Decimal("3.99")),
            ProductModel(id=2, name="Test Soda", price=Decimal("2.50")),
        ]
    )
    db.commit()
    return {1: Decimal("3.99"), 2: Decimal("2.50")}


@pytest.fixture
def cart_row(session_factory):
    """Durable cart row of a user, read in a fresh session."""

    def _get(user_id):
        with session_factory() as session:
            return session.execute(
                select(CartModel).where(CartModel.user_id == user_id)
            ).scalar_one_or_none()

    return _get
