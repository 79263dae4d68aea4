"""
Matching API tests.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.services.candidate_repository import CandidateRepository
from helpmatch.app.services.notification_service import InAppMatchNotifier


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == "up"


@pytest.mark.asyncio
async def test_health_degraded_when_redis_is_down(client, mock_redis, mocker):
    mocker.patch.object(mock_redis, "ping", side_effect=RedisConnectionError("refused"))

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["redis"] == "down"


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "trace-42"})

    assert response.headers["X-Correlation-ID"] == "trace-42"
    assert float(response.headers["X-Process-Time"]) >= 0


@pytest.mark.asyncio
async def test_find_matches(client, listings):
    request = await listings.flight_request()
    offer = await listings.flight_offer(helper_id=101)
    await listings.flight_offer(helper_id=102, flight_number="CA783")

    response = await client.get(f"/v1/matches/requests/{request.id}", params={"max_results": 5})

    assert response.status_code == 200
    data = response.json()
    assert data["request_id"] == request.id
    assert data["domain"] == "FLIGHT_COMPANION"
    assert data["total_candidates_evaluated"] == 1
    assert len(data["matches"]) == 1
    match = data["matches"][0]
    assert match["offer_id"] == offer.id
    assert 0 <= match["score"] <= 1
    assert match["breakdown"]["capability"] is not None
    assert match["breakdown"]["service_area"] is None
    assert match["recommendation_reason"]


@pytest.mark.asyncio
async def test_find_pickup_matches_reports_seats(client, listings):
    request = await listings.pickup_request()
    await listings.pickup_offer(max_passengers=3)

    response = await client.get(f"/v1/matches/requests/{request.id}")

    assert response.status_code == 200
    match = response.json()["matches"][0]
    assert match["remaining_seats"] == 3
    assert match["breakdown"]["service_area"] is not None


@pytest.mark.asyncio
async def test_find_matches_errors(client, listings):
    request = await listings.flight_request()

    missing = await client.get("/v1/matches/requests/9999")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "ERR_NOT_FOUND_001"

    bad_limit = await client.get(f"/v1/matches/requests/{request.id}", params={"max_results": 0})
    assert bad_limit.status_code == 422
    assert bad_limit.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_confirm_and_reconfirm(client, listings):
    request = await listings.flight_request()
    offer_a = await listings.flight_offer(helper_id=101)
    offer_b = await listings.flight_offer(helper_id=102)

    first = await client.put("/v1/matches", json={"request_id": request.id, "offer_id": offer_a.id})
    assert first.status_code == 200
    body = first.json()
    assert body["request_id"] == request.id
    assert body["offer_id"] == offer_a.id
    assert body["matched_at"] is not None
    assert body["replayed"] is False

    again = await client.put("/v1/matches", json={"request_id": request.id, "offer_id": offer_a.id})
    assert again.status_code == 200
    assert again.json()["matched_at"] == body["matched_at"]
    assert again.json()["replayed"] is True

    other = await client.put("/v1/matches", json={"request_id": request.id, "offer_id": offer_b.id})
    assert other.status_code == 409
    assert other.json()["error_code"] == "ERR_MATCH_CONFLICT_001"

    # Matched requests have no more matches to look for
    assert (await client.get(f"/v1/matches/requests/{request.id}")).status_code == 404


@pytest.mark.asyncio
async def test_confirm_validation(client, listings):
    request = await listings.flight_request(requester_id=1)
    own_offer = await listings.flight_offer(helper_id=1)

    bad_body = await client.put("/v1/matches", json={"request_id": 0, "offer_id": own_offer.id})
    assert bad_body.status_code == 422

    self_match = await client.put("/v1/matches", json={"request_id": request.id, "offer_id": own_offer.id})
    assert self_match.status_code == 422
    assert self_match.json()["error_code"] == "ERR_MATCH_VALIDATION_001"

    missing_offer = await client.put("/v1/matches", json={"request_id": request.id, "offer_id": 9999})
    assert missing_offer.status_code == 404


@pytest.mark.asyncio
async def test_cancel_and_audit_trail(client, listings):
    request = await listings.pickup_request(passenger_count=2)
    offer = await listings.pickup_offer(max_passengers=2)

    confirmed = await client.put(
        "/v1/matches",
        json={"request_id": request.id, "offer_id": offer.id},
        headers={"X-Actor-ID": "2"}
    )
    assert confirmed.status_code == 200

    cancelled = await client.delete(f"/v1/matches/requests/{request.id}", headers={"X-Actor-ID": "2"})
    assert cancelled.status_code == 200
    assert cancelled.json()["offer_id"] == offer.id

    again = await client.delete(f"/v1/matches/requests/{request.id}")
    assert again.status_code == 409

    trail = await client.get(f"/v1/matches/requests/{request.id}/audit")
    assert trail.status_code == 200
    actions = [entry["action"] for entry in trail.json()]
    assert actions == ["MATCH_CANCELLED", "MATCH_CONFIRMED"]
    assert all(entry["actor_id"] == 2 for entry in trail.json())

    # Seats are back on the market
    matches = await client.get(f"/v1/matches/requests/{request.id}")
    assert [m["offer_id"] for m in matches.json()["matches"]] == [offer.id]


@pytest.mark.asyncio
async def test_storage_outage_is_503(client, mocker):
    mocker.patch.object(
        CandidateRepository,
        "get_active_unmatched_request",
        side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))
    )

    response = await client.get("/v1/matches/requests/1")

    assert response.status_code == 503
    assert response.json()["error_code"] == "ERR_STORAGE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_list_notifications(client, session_factory, mock_redis):
    notifier = InAppMatchNotifier(session_factory, mock_redis, "helpmatch:matches")
    await notifier.notify_match_confirmed(1, 101, ServiceDomain.FLIGHT_COMPANION, {"request_id": 3, "offer_id": 4})

    response = await client.get("/v1/notifications/users/101")

    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["type"] == "MATCH_CONFIRMED"
    assert data[0]["metadata_payload"]["offer_id"] == 4
    assert data[0]["is_read"] is False
