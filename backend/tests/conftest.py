"""Pytest fixtures for the planted availability backend tests."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pad.database import Base, get_db
from pad.main import app
from pad.models import DiscoveredVenue, DiscoveryStrategy, Venue
from pad.models.discovered_venue import DISCOVERED

# Use SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    async with test_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def db():
    async with test_session() as session:
        yield session


@pytest_asyncio.fixture
async def other_db():
    """A second session, standing in for a concurrent reviewer."""
    async with test_session() as session:
        yield session


@pytest.fixture
def hiltl_payload() -> dict:
    return {
        "name": "Hiltl Sihlpost",
        "address": {"city": "Zürich", "country": "CH"},
        "delivery_platforms": [
            {
                "platform": "uber-eats",
                "url": "https://www.UberEats.com/ch/store/hiltl-sihlpost/abc123?utm_source=x",
                "rating": 4.6,
            }
        ],
        "dishes": [{"name": "Planted Chicken Bowl", "product": "planted.chicken"}],
    }


@pytest.fixture
def make_venue(db: AsyncSession):
    """Insert a discovered venue directly, bypassing the intake pipeline."""

    async def _make(**overrides) -> DiscoveredVenue:
        platforms = overrides.pop(
            "delivery_platforms",
            [{"platform": "wolt", "url": "https://wolt.com/en/che/zurich/restaurant/x"}],
        )
        data = {
            "name": "Tibits",
            "city": "Basel",
            "country": "CH",
            "planted_products": ["planted.chicken"],
            "dishes": [
                {
                    "name": "Planted Curry",
                    "price": "CHF 21.50",
                    "product": "planted.chicken",
                    "description": None,
                    "confidence": 90,
                }
            ],
            "confidence_score": 65,
            "confidence_factors": [
                {"factor": "base", "score": 50, "reason": "Discovered on a delivery platform"},
                {"factor": "product_match", "score": 15, "reason": "Specific product"},
            ],
            "status": DISCOVERED,
        }
        data.update(overrides)
        venue = DiscoveredVenue(**data)
        venue.set_platform_links(platforms)
        db.add(venue)
        await db.commit()
        return venue

    return _make


@pytest_asyncio.fixture
async def sample_strategy(db: AsyncSession) -> DiscoveryStrategy:
    strategy = DiscoveryStrategy(
        id="wolt-ch-planted",
        platform="wolt",
        country="CH",
        query_template="planted {city}",
    )
    db.add(strategy)
    await db.commit()
    return strategy


@pytest_asyncio.fixture
async def production_venue(db: AsyncSession) -> Venue:
    venue = Venue(
        name="Hiltl Sihlpost",
        street="Sihlpost 3",
        city="Zürich",
        country="CH",
        delivery_platforms=[
            {"platform": "wolt", "url": "https://wolt.com/en/che/zurich/restaurant/hiltl"}
        ],
    )
    db.add(venue)
    await db.commit()
    return venue
