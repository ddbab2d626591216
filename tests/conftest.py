"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Change feed and fake Redis for outbound events
- Test data factories
"""
# SQLite לפני ייבוא האפליקציה - ה-engine נוצר בזמן import
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import json
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from delivery_market.api.dependencies import get_feed
from delivery_market.db.change_feed import ChangeFeed
from delivery_market.db.database import Base, get_db
from delivery_market.db.models import PaymentType
from delivery_market.domain.services.claim_service import ClaimService, DriverInfo
from delivery_market.domain.services.delivery_service import (
    DeliveryService,
    ItemInfo,
    RouteInfo,
    SellerInfo,
)
from delivery_market.domain.services.wallet_service import WalletService
from delivery_market.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, feed: ChangeFeed):
    """Create test client with database and feed overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_feed] = lambda: feed

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Fake Redis
# ============================================================================


class FakeRedis:
    """תחליף ל-Redis לבדיקות - שומר את ההודעות שפורסמו לפי ערוץ."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []
        self.fail_publish = False

    async def ping(self) -> bool:
        return True

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("redis unavailable")
        self.published.append((channel, json.loads(message)))
        return 1

    def events(self, event_type: str | None = None) -> list[dict]:
        return [
            payload for _, payload in self.published
            if event_type is None or payload["type"] == event_type
        ]

    async def aclose(self) -> None:
        self.published.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """מחליף את get_redis ב-FakeRedis לכל הבדיקות."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("delivery_market.core.redis_client.get_redis", _get_fake_redis), \
         patch("delivery_market.domain.services.event_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Services and Factories
# ============================================================================


@pytest.fixture
def delivery_service(db_session: AsyncSession, feed: ChangeFeed) -> DeliveryService:
    return DeliveryService(db_session, feed)


@pytest.fixture
def claim_service(db_session: AsyncSession, feed: ChangeFeed) -> ClaimService:
    return ClaimService(db_session, feed)


@pytest.fixture
def wallet_service(db_session: AsyncSession, feed: ChangeFeed) -> WalletService:
    return WalletService(db_session, feed)


@pytest.fixture
def delivery_factory(delivery_service: DeliveryService):
    """Factory for creating pending deliveries through the service"""
    async def _create_delivery(
        seller_id: str = "seller-1",
        seller_name: str = "Noa's Bakery",
        pickup_address: str = "רחוב הרצל 1, תל אביב",
        dropoff_address: str = "רחוב בן יהודה 50, ירושלים",
        item_name: str = "Cake box",
        weight_kg: float = 2.5,
        fragile: bool = True,
        payment_type: PaymentType = PaymentType.PREPAID,
        distance_km: float | None = 10.0,
    ):
        return await delivery_service.create_delivery(
            seller=SellerInfo(seller_id=seller_id, name=seller_name),
            route=RouteInfo(
                pickup_address=pickup_address,
                dropoff_address=dropoff_address,
                distance_km=distance_km,
            ),
            item=ItemInfo(name=item_name, weight_kg=weight_kg, fragile=fragile),
            payment_type=payment_type,
        )

    return _create_delivery


@pytest.fixture
def driver_factory():
    def _driver(driver_id: str = "driver-1", name: str = "Dana", phone: str | None = "0501234567") -> DriverInfo:
        return DriverInfo(driver_id=driver_id, name=name, phone=phone)

    return _driver


@pytest.fixture
def delivered_factory(delivery_factory, claim_service, delivery_service, driver_factory):
    """Factory for deliveries walked all the way to delivered (no wallet credit)"""
    async def _create(driver_id: str = "driver-1", **kwargs):
        delivery = await delivery_factory(**kwargs)
        await claim_service.claim(delivery.id, driver_factory(driver_id=driver_id))
        for _ in range(3):
            delivery = await delivery_service.advance(delivery.id, driver_id)
        return delivery

    return _create
