"""
Failure Mode Tests.

Outages of storage, Redis or the notification collaborator must surface as
UNAVAILABLE or be absorbed, never corrupt match state.
"""

import json
import pytest
from datetime import date
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from helpmatch.app.core.reliability import CircuitBreaker, CircuitOpenError
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.models.notification import Notification, NotificationType
from helpmatch.app.services.match_confirmation import MatchConfirmationService
from helpmatch.app.services.itinerary import PickupItineraryKey
from helpmatch.app.services.notification_service import InAppMatchNotifier
from helpmatch.app.services.results import ResultStatus


def storage_down():
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_threshold():
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=60)

    async def failing():
        raise ConnectionError("down")

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

    assert breaker.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        await breaker.call(failing)


@pytest.mark.asyncio
async def test_circuit_breaker_recovers_after_timeout():
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60)

    async def failing():
        raise ConnectionError("down")

    async def healthy():
        return "ok"

    with pytest.raises(ConnectionError):
        await breaker.call(failing)
    breaker.last_failure_time -= 61

    assert await breaker.call(healthy) == "ok"
    assert breaker.state == "CLOSED"
    assert breaker.failures == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens():
    breaker = CircuitBreaker(failure_threshold=3, reset_timeout=60)
    breaker.state = "OPEN"
    breaker.failures = 3
    breaker.last_failure_time -= 61

    async def failing():
        raise ConnectionError("still down")

    with pytest.raises(ConnectionError):
        await breaker.call(failing)
    assert breaker.state == "OPEN"


@pytest.mark.asyncio
async def test_notifier_failure_keeps_match(repository, notifier, matching_settings, listings):
    notifier.fail = True
    service = MatchConfirmationService(repository, notifier, matching_settings)
    request = await listings.flight_request()
    offer = await listings.flight_offer()

    result = await service.confirm_match(request.id, offer.id)
    await service.wait_for_notifications()

    assert result.status == ResultStatus.OK
    stored = await repository.get_request(request.id)
    assert stored.is_matched is True
    assert stored.matched_offer_id == offer.id


@pytest.mark.asyncio
async def test_confirmation_without_notifier(repository, matching_settings, listings):
    service = MatchConfirmationService(repository, None, matching_settings)
    request = await listings.flight_request()
    offer = await listings.flight_offer()

    assert (await service.confirm_match(request.id, offer.id)).ok


@pytest.mark.asyncio
async def test_storage_outage_on_find_matches(matcher, repository, mocker):
    mocker.patch.object(repository, "get_active_unmatched_request", side_effect=storage_down())

    result = await matcher.find_matches(1, 10)

    assert result.status == ResultStatus.UNAVAILABLE


@pytest.mark.asyncio
async def test_storage_outage_during_bind(confirmation_service, repository, listings, mocker):
    request = await listings.flight_request()
    offer = await listings.flight_offer()
    mocker.patch.object(repository, "atomic_bind_match", side_effect=storage_down())

    result = await confirmation_service.confirm_match(request.id, offer.id)

    assert result.status == ResultStatus.UNAVAILABLE
    mocker.stopall()
    assert (await repository.get_request(request.id)).is_matched is False


@pytest.mark.asyncio
async def test_storage_outage_on_cancel(confirmation_service, repository, mocker):
    mocker.patch.object(repository, "get_request", side_effect=storage_down())

    result = await confirmation_service.cancel_match(1)

    assert result.status == ResultStatus.UNAVAILABLE


@pytest.mark.asyncio
async def test_failed_offer_update_rolls_back_request(repository, listings):
    """An offer that cannot be consumed leaves the request exactly as it was."""
    request = await listings.flight_request()
    offer = await listings.flight_offer(is_available=False)

    outcome = await repository.atomic_bind_match(
        ServiceDomain.FLIGHT_COMPANION, request.id, offer.id, expected_version=1
    )

    assert outcome.value == "OFFER_UNAVAILABLE"
    stored = await repository.get_request(request.id)
    assert stored.is_matched is False
    assert stored.version == 1


@pytest.mark.asyncio
async def test_in_app_notifications_survive_redis_outage(session_factory, mock_redis):
    mock_redis.fail_publish = True
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=60)
    notifier = InAppMatchNotifier(session_factory, mock_redis, "helpmatch:matches", breaker)

    for _ in range(3):
        await notifier.notify_match_confirmed(1, 101, ServiceDomain.PICKUP, {"request_id": 7, "offer_id": 9})

    assert breaker.state == "OPEN"
    async with session_factory() as session:
        rows = (await session.execute(select(Notification))).scalars().all()
    assert len(rows) == 6
    assert {row.user_id for row in rows} == {1, 101}
    assert all(row.type == NotificationType.MATCH_CONFIRMED for row in rows)


@pytest.mark.asyncio
async def test_match_event_is_published(session_factory, mock_redis):
    notifier = InAppMatchNotifier(session_factory, mock_redis, "helpmatch:matches")

    await notifier.notify_match_cancelled(1, 101, ServiceDomain.FLIGHT_COMPANION, {"request_id": 7, "offer_id": 9})

    assert len(mock_redis.published) == 1
    channel, message = mock_redis.published[0]
    assert channel == "helpmatch:matches"
    event = json.loads(message)
    assert event["event"] == "match_cancelled"
    assert event["domain"] == "FLIGHT_COMPANION"
    assert event["request_id"] == 7


@pytest.mark.asyncio
async def test_repository_rejects_mismatched_itinerary_key(repository):
    with pytest.raises(ValueError):
        await repository.get_available_offers_by_itinerary_key(
            ServiceDomain.FLIGHT_COMPANION,
            PickupItineraryKey("PVG", date(2025, 8, 1), None),
            exclude_owner_id=1
        )
