"""
Candidate repository.

Storage access for the matching engine: eligibility lookups, the
itinerary-keyed candidate query, and the transactional bind/release of a
request to an offer.

Exclusivity of a match is enforced by the database, not by this process:
every write is a conditional UPDATE whose WHERE clause restates the state it
expects (request version, offer availability, remaining seats). When two
transactions race, the loser's UPDATE matches no row and the whole
transaction is rolled back.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import async_sessionmaker

from helpmatch.app.db.session import begin_write
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.models.help_request import HelpRequest
from helpmatch.app.models.help_offer import HelpOffer, FlightCompanionOffer, PickupOffer
from helpmatch.app.services.audit import log_event, AuditAction
from helpmatch.app.services.itinerary import ItineraryKey, FlightItineraryKey, PickupItineraryKey

logger = logging.getLogger("helpmatch.repository")


class TransitionOutcome(str, enum.Enum):
    """
    APPLIED: request and offer updated together
    VERSION_CONFLICT: the request changed since it was read (or is no longer unmatched)
    OFFER_UNAVAILABLE: the offer was taken or lacks the seats
    """
    APPLIED = "APPLIED"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    OFFER_UNAVAILABLE = "OFFER_UNAVAILABLE"


class _TransitionAborted(Exception):
    """Raised inside a transaction block to roll it back with an outcome."""

    def __init__(self, outcome: TransitionOutcome):
        self.outcome = outcome
        super().__init__(outcome.value)


class CandidateRepository:
    """
    Request/offer persistence used by the matcher and the confirmation service.

    Each method opens its own session from the injected factory; reads never
    start a write transaction.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_request(self, request_id: int) -> Optional[HelpRequest]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(HelpRequest).where(HelpRequest.id == request_id)
            )
            return result.scalar_one_or_none()

    async def get_active_unmatched_request(self, request_id: int) -> Optional[HelpRequest]:
        """Request eligible for matching, or None."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(HelpRequest).where(
                    HelpRequest.id == request_id,
                    HelpRequest.is_active.is_(True),
                    HelpRequest.is_matched.is_(False)
                )
            )
            return result.scalar_one_or_none()

    async def get_offer(self, offer_id: int) -> Optional[HelpOffer]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(HelpOffer).where(HelpOffer.id == offer_id)
            )
            return result.scalar_one_or_none()

    async def get_available_offers_by_itinerary_key(
        self,
        domain: ServiceDomain,
        key: ItineraryKey,
        exclude_owner_id: int
    ) -> List[HelpOffer]:
        """
        Available offers sharing the exact columns of an itinerary key.

        The pickup arrival-time window is not applied here; callers check it
        on this already narrow set.
        """
        if domain == ServiceDomain.FLIGHT_COMPANION and isinstance(key, FlightItineraryKey):
            query = select(FlightCompanionOffer).where(
                FlightCompanionOffer.flight_number == key.flight_number,
                FlightCompanionOffer.flight_date == key.flight_date,
                FlightCompanionOffer.departure_airport == key.departure_airport,
                FlightCompanionOffer.arrival_airport == key.arrival_airport
            )
            model = FlightCompanionOffer
        elif domain == ServiceDomain.PICKUP and isinstance(key, PickupItineraryKey):
            query = select(PickupOffer).where(
                PickupOffer.airport == key.airport,
                PickupOffer.arrival_date == key.arrival_date
            )
            model = PickupOffer
        else:
            raise ValueError(f"Itinerary key {key!r} does not belong to domain {domain}")

        query = query.where(
            model.is_available.is_(True),
            model.helper_id != exclude_owner_id
        ).order_by(model.created_at, model.id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def matched_requests_for_offer(self, offer_id: int) -> List[HelpRequest]:
        """Reverse lookup: requests currently bound to an offer."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(HelpRequest).where(
                    HelpRequest.matched_offer_id == offer_id,
                    HelpRequest.is_matched.is_(True)
                ).order_by(HelpRequest.matched_at, HelpRequest.id)
            )
            return list(result.scalars().all())

    async def atomic_bind_match(
        self,
        domain: ServiceDomain,
        request_id: int,
        offer_id: int,
        expected_version: int,
        seats: int = 1,
        actor_id: Optional[int] = None,
        matched_at: Optional[datetime] = None
    ) -> TransitionOutcome:
        """
        Bind a request to an offer in one transaction.

        1. Request: unmatched, active and still at ``expected_version``
           -> matched to the offer, version + 1
        2. Offer: flight companion must be available -> unavailable;
           pickup must have ``seats`` left -> seats consumed, unavailable at 0
        3. Audit record

        Any failed condition rolls back all three. ``matched_at`` defaults to
        now (UTC); callers that report the binding pass the value they report.
        """
        if matched_at is None:
            matched_at = datetime.now(timezone.utc)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await begin_write(session)
                    bound = await session.execute(
                        update(HelpRequest)
                        .where(
                            HelpRequest.id == request_id,
                            HelpRequest.version == expected_version,
                            HelpRequest.is_active.is_(True),
                            HelpRequest.is_matched.is_(False)
                        )
                        .values(
                            is_matched=True,
                            matched_offer_id=offer_id,
                            matched_at=matched_at,
                            version=HelpRequest.version + 1
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if bound.rowcount != 1:
                        raise _TransitionAborted(TransitionOutcome.VERSION_CONFLICT)

                    consumed = await session.execute(
                        self._consume_offer_statement(domain, offer_id, seats)
                    )
                    if consumed.rowcount != 1:
                        raise _TransitionAborted(TransitionOutcome.OFFER_UNAVAILABLE)

                    await log_event(
                        session,
                        action=AuditAction.MATCH_CONFIRMED,
                        actor_id=actor_id,
                        request_id=request_id,
                        offer_id=offer_id,
                        metadata={
                            "domain": domain.value,
                            "seats": seats,
                            "request_version": expected_version + 1
                        }
                    )
        except _TransitionAborted as aborted:
            logger.info(
                "Bind of request %s to offer %s rolled back: %s",
                request_id, offer_id, aborted.outcome.value
            )
            return aborted.outcome

        return TransitionOutcome.APPLIED

    async def release_match(
        self,
        domain: ServiceDomain,
        request_id: int,
        offer_id: int,
        expected_version: int,
        seats: int = 1,
        actor_id: Optional[int] = None
    ) -> TransitionOutcome:
        """
        Reverse of ``atomic_bind_match``: unbind the request and give the
        offer its capacity back, in one transaction.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await begin_write(session)
                    released = await session.execute(
                        update(HelpRequest)
                        .where(
                            HelpRequest.id == request_id,
                            HelpRequest.version == expected_version,
                            HelpRequest.is_matched.is_(True),
                            HelpRequest.matched_offer_id == offer_id
                        )
                        .values(
                            is_matched=False,
                            matched_offer_id=None,
                            matched_at=None,
                            version=HelpRequest.version + 1
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if released.rowcount != 1:
                        raise _TransitionAborted(TransitionOutcome.VERSION_CONFLICT)

                    restored = await session.execute(
                        self._restore_offer_statement(domain, offer_id, seats)
                    )
                    if restored.rowcount != 1:
                        raise _TransitionAborted(TransitionOutcome.OFFER_UNAVAILABLE)

                    await log_event(
                        session,
                        action=AuditAction.MATCH_CANCELLED,
                        actor_id=actor_id,
                        request_id=request_id,
                        offer_id=offer_id,
                        metadata={"domain": domain.value, "seats": seats}
                    )
        except _TransitionAborted as aborted:
            logger.info(
                "Release of request %s from offer %s rolled back: %s",
                request_id, offer_id, aborted.outcome.value
            )
            return aborted.outcome

        return TransitionOutcome.APPLIED

    @staticmethod
    def _consume_offer_statement(domain: ServiceDomain, offer_id: int, seats: int):
        if domain == ServiceDomain.PICKUP:
            seats_left = PickupOffer.remaining_seats - seats
            return (
                update(PickupOffer)
                .where(
                    PickupOffer.id == offer_id,
                    PickupOffer.is_available.is_(True),
                    PickupOffer.remaining_seats >= seats
                )
                .values(
                    remaining_seats=seats_left,
                    is_available=case((seats_left > 0, True), else_=False),
                    version=PickupOffer.version + 1
                )
                .execution_options(synchronize_session=False)
            )

        # Flight companions accompany one traveler per itinerary
        return (
            update(FlightCompanionOffer)
            .where(
                FlightCompanionOffer.id == offer_id,
                FlightCompanionOffer.is_available.is_(True)
            )
            .values(is_available=False, version=FlightCompanionOffer.version + 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _restore_offer_statement(domain: ServiceDomain, offer_id: int, seats: int):
        # Availability is owned by bind/release: an offer is reopened only when
        # the released capacity is what closed it
        if domain == ServiceDomain.PICKUP:
            seats_after = PickupOffer.remaining_seats + seats
            return (
                update(PickupOffer)
                .where(PickupOffer.id == offer_id)
                .values(
                    remaining_seats=case(
                        (seats_after > PickupOffer.max_passengers, PickupOffer.max_passengers),
                        else_=seats_after
                    ),
                    is_available=case(
                        (PickupOffer.remaining_seats <= 0, True),
                        else_=PickupOffer.is_available
                    ),
                    version=PickupOffer.version + 1
                )
                .execution_options(synchronize_session=False)
            )

        # A bound flight companion offer is closed by its single binding
        return (
            update(FlightCompanionOffer)
            .where(FlightCompanionOffer.id == offer_id)
            .values(is_available=True, version=FlightCompanionOffer.version + 1)
            .execution_options(synchronize_session=False)
        )
