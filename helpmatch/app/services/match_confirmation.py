"""
Match confirmation state machine.

    unmatched --confirm_match--> matched --cancel_match--> unmatched

``confirm_match`` is the only path that sets ``is_matched`` or consumes offer
capacity. Checks done here (existence, domain, ownership, itinerary,
capacity) give precise outcomes for the common cases; the guarantee that a
request is bound at most once and an offer never oversold comes from the
conditional UPDATEs in ``CandidateRepository.atomic_bind_match``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from helpmatch.app.core.config import MatchingSettings
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.services.candidate_repository import CandidateRepository, TransitionOutcome
from helpmatch.app.services.itinerary import is_itinerary_compatible
from helpmatch.app.services.notification_service import MatchNotifier
from helpmatch.app.services.results import ConfirmationResult, MatchConfirmation, ResultStatus

logger = logging.getLogger("helpmatch.confirmation")

# Strong references to in-flight notification tasks
_pending_notifications: Set[asyncio.Task] = set()


async def wait_for_notifications() -> None:
    """Wait until every scheduled match notification has finished."""
    while _pending_notifications:
        await asyncio.gather(*list(_pending_notifications), return_exceptions=True)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are UTC; some drivers return them without tzinfo."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def seats_required(request) -> int:
    """Offer capacity a request consumes once matched."""
    if request.domain == ServiceDomain.PICKUP:
        return request.passenger_count or 1
    return 1


class MatchConfirmationService:
    def __init__(
        self,
        repository: CandidateRepository,
        notifier: Optional[MatchNotifier],
        settings: MatchingSettings
    ):
        self.repository = repository
        self.notifier = notifier
        self.settings = settings

    async def confirm_match(
        self,
        request_id: int,
        offer_id: int,
        actor_id: Optional[int] = None
    ) -> ConfirmationResult:
        """
        Bind a request to an offer.

        Re-confirming a pair that is already bound returns OK with the stored
        ``matched_at`` and changes nothing.
        """
        if not request_id or request_id < 1 or not offer_id or offer_id < 1:
            return ConfirmationResult(
                status=ResultStatus.INVALID,
                message="request_id and offer_id must be positive integers"
            )

        try:
            return await self._confirm(request_id, offer_id, actor_id)
        except SQLAlchemyError:
            logger.exception("Confirmation of request %s with offer %s failed", request_id, offer_id)
            return ConfirmationResult(
                status=ResultStatus.UNAVAILABLE,
                message="Storage temporarily unavailable"
            )

    async def cancel_match(
        self,
        request_id: int,
        actor_id: Optional[int] = None
    ) -> ConfirmationResult:
        """Unbind a matched request and give the offer its capacity back."""
        if not request_id or request_id < 1:
            return ConfirmationResult(
                status=ResultStatus.INVALID,
                message="request_id must be a positive integer"
            )

        try:
            return await self._cancel(request_id, actor_id)
        except SQLAlchemyError:
            logger.exception("Cancellation of request %s failed", request_id)
            return ConfirmationResult(
                status=ResultStatus.UNAVAILABLE,
                message="Storage temporarily unavailable"
            )

    async def wait_for_notifications(self) -> None:
        await wait_for_notifications()

    async def _confirm(self, request_id: int, offer_id: int, actor_id: Optional[int]) -> ConfirmationResult:
        request = await self.repository.get_request(request_id)
        if request is None or not request.is_active:
            return ConfirmationResult(
                status=ResultStatus.NOT_FOUND,
                message=f"Help request {request_id} not found or inactive"
            )

        if request.is_matched:
            return self._already_matched(request, offer_id)

        offer = await self.repository.get_offer(offer_id)
        if offer is None:
            return ConfirmationResult(
                status=ResultStatus.NOT_FOUND,
                message=f"Help offer {offer_id} not found"
            )

        if offer.domain != request.domain:
            return ConfirmationResult(
                status=ResultStatus.INVALID,
                message=f"Offer {offer_id} is a {offer.domain.value} offer, request {request_id} is {request.domain.value}"
            )
        if offer.helper_id == request.requester_id:
            return ConfirmationResult(
                status=ResultStatus.INVALID,
                message="A request cannot be matched with an offer of the same user"
            )
        if not is_itinerary_compatible(request, offer, self.settings.pickup_time_tolerance_minutes):
            return ConfirmationResult(
                status=ResultStatus.INVALID,
                message=f"Offer {offer_id} does not serve the itinerary of request {request_id}"
            )

        seats = seats_required(request)
        if offer.domain == ServiceDomain.PICKUP:
            if request.has_luggage and offer.can_handle_luggage is False:
                return ConfirmationResult(
                    status=ResultStatus.INVALID,
                    message=f"Offer {offer_id} cannot take luggage"
                )
            if (offer.max_passengers or 0) < seats:
                return ConfirmationResult(
                    status=ResultStatus.INVALID,
                    message=f"Offer {offer_id} carries at most {offer.max_passengers} passengers"
                )

        if not offer.is_available:
            return await self._conflict_unless_bound(request_id, offer_id, f"Offer {offer_id} is no longer available")
        if offer.domain == ServiceDomain.PICKUP and (offer.remaining_seats or 0) < seats:
            return await self._conflict_unless_bound(
                request_id, offer_id, f"Offer {offer_id} has {offer.remaining_seats} seats left, {seats} needed"
            )

        matched_at = datetime.now(timezone.utc)
        outcome = await self.repository.atomic_bind_match(
            request.domain,
            request_id,
            offer_id,
            expected_version=request.version,
            seats=seats,
            actor_id=actor_id,
            matched_at=matched_at
        )

        if outcome == TransitionOutcome.OFFER_UNAVAILABLE:
            return await self._conflict_unless_bound(request_id, offer_id, f"Offer {offer_id} was just taken")
        if outcome == TransitionOutcome.VERSION_CONFLICT:
            return await self._conflict_unless_bound(
                request_id, offer_id, f"Help request {request_id} was modified concurrently"
            )

        confirmation = MatchConfirmation(
            request_id=request_id,
            offer_id=offer_id,
            matched_at=matched_at
        )
        logger.info(
            "Confirmed %s match: request %s -> offer %s (%d seat(s))",
            request.domain.value, request_id, offer_id, seats
        )

        self._schedule_notification(
            "notify_match_confirmed",
            requester_id=request.requester_id,
            helper_id=offer.helper_id,
            domain=request.domain,
            details={
                "request_id": request_id,
                "offer_id": offer_id,
                "matched_at": confirmation.matched_at.isoformat() if confirmation.matched_at else None,
                "seats": seats,
            }
        )

        return ConfirmationResult(status=ResultStatus.OK, confirmation=confirmation)

    async def _cancel(self, request_id: int, actor_id: Optional[int]) -> ConfirmationResult:
        request = await self.repository.get_request(request_id)
        if request is None:
            return ConfirmationResult(
                status=ResultStatus.NOT_FOUND,
                message=f"Help request {request_id} not found"
            )
        if not request.is_matched:
            return ConfirmationResult(
                status=ResultStatus.CONFLICT,
                message=f"Help request {request_id} is not matched"
            )

        offer_id = request.matched_offer_id
        offer = await self.repository.get_offer(offer_id)
        seats = seats_required(request)

        outcome = await self.repository.release_match(
            request.domain,
            request_id,
            offer_id,
            expected_version=request.version,
            seats=seats,
            actor_id=actor_id
        )
        if outcome != TransitionOutcome.APPLIED:
            return ConfirmationResult(
                status=ResultStatus.CONFLICT,
                message=f"Help request {request_id} was modified concurrently"
            )

        logger.info("Cancelled match: request %s released offer %s", request_id, offer_id)

        if offer is not None:
            self._schedule_notification(
                "notify_match_cancelled",
                requester_id=request.requester_id,
                helper_id=offer.helper_id,
                domain=request.domain,
                details={"request_id": request_id, "offer_id": offer_id, "seats": seats}
            )

        return ConfirmationResult(
            status=ResultStatus.OK,
            confirmation=MatchConfirmation(
                request_id=request_id,
                offer_id=offer_id,
                matched_at=as_utc(request.matched_at)
            )
        )

    async def _conflict_unless_bound(self, request_id: int, offer_id: int, message: str) -> ConfirmationResult:
        """
        CONFLICT, unless a confirmation of this very pair committed after the
        request was read, in which case the outcome is a replay.
        """
        current = await self.repository.get_request(request_id)
        if current is not None and current.is_matched and current.matched_offer_id == offer_id:
            return self._replayed(current)
        return ConfirmationResult(status=ResultStatus.CONFLICT, message=message)

    def _already_matched(self, request, offer_id: int) -> ConfirmationResult:
        if request.matched_offer_id == offer_id:
            return self._replayed(request)
        return ConfirmationResult(
            status=ResultStatus.CONFLICT,
            message=f"Help request {request.id} is already matched with another offer"
        )

    @staticmethod
    def _replayed(request) -> ConfirmationResult:
        logger.info("Request %s already matched with offer %s", request.id, request.matched_offer_id)
        return ConfirmationResult(
            status=ResultStatus.OK,
            confirmation=MatchConfirmation(
                request_id=request.id,
                offer_id=request.matched_offer_id,
                matched_at=as_utc(request.matched_at)
            ),
            replayed=True
        )

    def _schedule_notification(self, method: str, **kwargs) -> None:
        if self.notifier is None:
            return
        task = asyncio.create_task(self._notify(method, **kwargs))
        _pending_notifications.add(task)
        task.add_done_callback(_pending_notifications.discard)

    async def _notify(self, method: str, **kwargs) -> None:
        try:
            await getattr(self.notifier, method)(**kwargs)
        except Exception:
            # Delivery is best effort; the match stays committed
            logger.exception(
                "Notification %s failed for request %s",
                method, kwargs.get("details", {}).get("request_id")
            )
