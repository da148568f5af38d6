"""
Pytest configuration and fixtures
"""

import copy
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from models import Base
from schemas.catalog import CatalogVehicle
from ingestion.transformers.filters import VehicleFilter
from typing import AsyncGenerator

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BASE_RECORD = {
    "id": 1001,
    "brand_id": 7,
    "model_id": 70,
    "brand_name": "Toyota",
    "model_name": "Corolla",
    "version": "XEI 2.0",
    "description": "Unico dueno, service oficial",
    "year": 2020,
    "kilometres": 45000,
    "license_plate": "ABC123",
    "origin": "ORG-1001",
    "car_condition": "used",
    "car_transmission": "Manual",
    "car_fuel_type": "Nafta",
    "car_segment": "Sedan",
    "price": {"list_price": 5000, "currency_name": "Dolar"},
    "colors": [{"name": "Blanco"}],
    "stocks": [
        {"status": "ACTIVE", "branch_office_name": "Casa Central", "location_name": "Central Branch"}
    ],
    "images": [
        {"url": "https://cdn.example.com/cars/th-1001-a.jpg"},
        {"url": "https://cdn.example.com/cars/th-1001-b.jpg"},
    ],
}


def make_payload(**overrides) -> dict:
    """A raw feed record; keyword arguments replace top-level keys"""
    payload = copy.deepcopy(BASE_RECORD)
    payload.update(overrides)
    return payload


def make_record(**overrides) -> CatalogVehicle:
    return CatalogVehicle(**make_payload(**overrides))


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def payload_factory():
    return make_payload


@pytest.fixture
def vehicle_filter():
    """Filter with an explicit configuration, independent of the environment"""
    return VehicleFilter(
        blocked_locations=["Deposito Norte"],
        min_price=1.0,
        blocked_statuses=["RESERVED"],
        require_images=True,
        active_statuses=["ACTIVE", "RESERVED"],
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()
