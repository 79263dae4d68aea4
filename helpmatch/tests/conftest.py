"""
Centralized Test Configuration.
"""

import pytest
from datetime import date, time
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from helpmatch.app.main import app
from helpmatch.app.db.session import get_session_factory, Base
from helpmatch.app.core.config import MatchingSettings
from helpmatch.app.core.dependencies import get_notifier, match_events_breaker
from helpmatch.app.core.redis_client import get_redis
import helpmatch.app.core.redis_client as redis_client_module
from helpmatch.app.models.help_request import FlightCompanionRequest, PickupRequest
from helpmatch.app.models.help_offer import FlightCompanionOffer, PickupOffer
from helpmatch.app.services.candidate_repository import CandidateRepository
from helpmatch.app.services.matcher import Matcher
from helpmatch.app.services.match_confirmation import MatchConfirmationService

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FLIGHT_DATE = date(2025, 8, 1)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.published = []
        self.fail_publish = False
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self._closed = True


class RecordingNotifier:
    """MatchNotifier that keeps every call in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.confirmed = []
        self.cancelled = []

    async def notify_match_confirmed(self, requester_id, helper_id, domain, details):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.confirmed.append(
            {"requester_id": requester_id, "helper_id": helper_id, "domain": domain, "details": details}
        )

    async def notify_match_cancelled(self, requester_id, helper_id, domain, details):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.cancelled.append(
            {"requester_id": requester_id, "helper_id": helper_id, "domain": domain, "details": details}
        )


class ListingFactory:
    """Persists requests and offers with sensible defaults around one itinerary."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, listing):
        async with self.session_factory() as session:
            session.add(listing)
            await session.commit()
            await session.refresh(listing)
        return listing

    async def flight_request(self, **overrides):
        fields = dict(
            requester_id=1,
            flight_number="NZ289",
            flight_date=FLIGHT_DATE,
            departure_airport="AKL",
            arrival_airport="PVG",
            offered_amount=80,
            preferred_language="Chinese",
        )
        fields.update(overrides)
        return await self._save(FlightCompanionRequest(**fields))

    async def flight_offer(self, **overrides):
        fields = dict(
            helper_id=101,
            flight_number="NZ289",
            flight_date=FLIGHT_DATE,
            departure_airport="AKL",
            arrival_airport="PVG",
            price=60,
            languages="Chinese, English",
            available_services="Translation, Navigation",
        )
        fields.update(overrides)
        return await self._save(FlightCompanionOffer(**fields))

    async def pickup_request(self, **overrides):
        fields = dict(
            requester_id=2,
            flight_number="NZ289",
            airport="PVG",
            arrival_date=FLIGHT_DATE,
            arrival_time=time(14, 30),
            destination_address="Century Avenue, Pudong",
            passenger_count=1,
            has_luggage=True,
            offered_amount=50,
            preferred_language="Mandarin",
        )
        fields.update(overrides)
        return await self._save(PickupRequest(**fields))

    async def pickup_offer(self, **overrides):
        fields = dict(
            helper_id=201,
            airport="PVG",
            arrival_date=FLIGHT_DATE,
            arrival_time=time(14, 0),
            vehicle_type="SUV",
            max_passengers=4,
            can_handle_luggage=True,
            price=40,
            service_area="Pudong, Puxi",
            languages="Mandarin, English",
        )
        fields.update(overrides)
        return await self._save(PickupOffer(**fields))


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def listings(session_factory):
    return ListingFactory(session_factory)


@pytest.fixture
def matching_settings():
    return MatchingSettings()


@pytest.fixture
def repository(session_factory):
    return CandidateRepository(session_factory)


@pytest.fixture
def matcher(repository, matching_settings):
    return Matcher(repository, matching_settings)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def confirmation_service(repository, notifier, matching_settings):
    return MatchConfirmationService(repository, notifier, matching_settings)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture(autouse=True)
def reset_circuit_breaker():
    match_events_breaker.reset_state()
    yield
    match_events_breaker.reset_state()


@pytest.fixture
async def client(session_factory, mock_redis, notifier):
    """Async client for testing, wired to the per-test database."""
    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = override_get_redis
    # Notifications run after the response; keep them off the shared test connection
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client
