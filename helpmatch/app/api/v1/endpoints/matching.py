"""
Matching API Endpoints.

Ranked matches for a request, confirmation and cancellation of a match,
and the audit trail of a request's match transitions.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Header
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.app.core.config import matching_settings
from helpmatch.app.core.dependencies import get_db, get_matcher, get_confirmation_service
from helpmatch.app.core.exceptions import (
    ResourceNotFoundError,
    MatchConflictError,
    MatchValidationError,
    StorageUnavailableError,
)
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.schemas.matching import (
    ConfirmMatchRequest,
    MatchListResponse,
    MatchCandidateResponse,
    ScoreBreakdownResponse,
    MatchConfirmationResponse,
    AuditEntryResponse,
)
from helpmatch.app.services.audit import get_audit_trail
from helpmatch.app.services.matcher import Matcher
from helpmatch.app.services.match_confirmation import MatchConfirmationService
from helpmatch.app.services.results import ResultStatus

router = APIRouter(prefix="/matches", tags=["Matching"])


def _raise_for_status(status: ResultStatus, message: str, resource: str, resource_id: int) -> None:
    """Translate a non-OK result into the matching application exception."""
    if status == ResultStatus.NOT_FOUND:
        raise ResourceNotFoundError(resource, resource_id, message=message or None)
    if status == ResultStatus.CONFLICT:
        raise MatchConflictError(message, details={"request_id": resource_id})
    if status == ResultStatus.INVALID:
        raise MatchValidationError(message)
    if status == ResultStatus.UNAVAILABLE:
        raise StorageUnavailableError(message or "Storage temporarily unavailable")


@router.get("/requests/{request_id}", response_model=MatchListResponse)
async def find_matches(
    request_id: int = Path(..., ge=1, description="Help request ID"),
    max_results: int = Query(
        matching_settings.default_max_results,
        ge=1,
        le=matching_settings.max_results_limit
    ),
    matcher: Matcher = Depends(get_matcher)
):
    """
    Ranked offers for an active, unmatched help request.

    Read-only. Results may be a few seconds stale; confirmation re-validates.
    """
    result = await matcher.find_matches(request_id, max_results)
    if not result.ok:
        _raise_for_status(result.status, result.message, "Help request", request_id)

    matches = []
    for match in result.matches:
        offer = match.offer
        breakdown = match.breakdown
        matches.append(MatchCandidateResponse(
            offer_id=offer.id,
            helper_id=offer.helper_id,
            score=breakdown.overall,
            breakdown=ScoreBreakdownResponse(
                reputation=breakdown.reputation,
                experience=breakdown.experience,
                language=breakdown.language,
                price=breakdown.price,
                capability=breakdown.capability,
                service_area=breakdown.service_area
            ),
            recommendation_reason=match.reason,
            price=float(offer.price),
            languages=offer.languages,
            average_rating=float(offer.average_rating) if offer.average_rating is not None else None,
            rating_count=offer.rating_count or 0,
            helped_count=offer.helped_count or 0,
            remaining_seats=offer.remaining_seats if offer.domain == ServiceDomain.PICKUP else None
        ))

    return MatchListResponse(
        request_id=request_id,
        domain=result.request.domain,
        matches=matches,
        total_candidates_evaluated=result.candidates_evaluated
    )


@router.put("", response_model=MatchConfirmationResponse)
async def confirm_match(
    payload: ConfirmMatchRequest,
    x_actor_id: Optional[int] = Header(None, description="User performing the confirmation"),
    service: MatchConfirmationService = Depends(get_confirmation_service)
):
    """
    Bind a help request to a help offer.

    Idempotent for the same pair. 409 when the request is bound to another
    offer or the offer was taken in the meantime.
    """
    result = await service.confirm_match(payload.request_id, payload.offer_id, actor_id=x_actor_id)
    if not result.ok:
        _raise_for_status(result.status, result.message, "Help request", payload.request_id)

    confirmation = result.confirmation
    return MatchConfirmationResponse(
        request_id=confirmation.request_id,
        offer_id=confirmation.offer_id,
        matched_at=confirmation.matched_at,
        replayed=result.replayed
    )


@router.delete("/requests/{request_id}", response_model=MatchConfirmationResponse)
async def cancel_match(
    request_id: int = Path(..., ge=1, description="Help request ID"),
    x_actor_id: Optional[int] = Header(None, description="User performing the cancellation"),
    service: MatchConfirmationService = Depends(get_confirmation_service)
):
    """Release a matched request and restore the offer's capacity."""
    result = await service.cancel_match(request_id, actor_id=x_actor_id)
    if not result.ok:
        _raise_for_status(result.status, result.message, "Help request", request_id)

    confirmation = result.confirmation
    return MatchConfirmationResponse(
        request_id=confirmation.request_id,
        offer_id=confirmation.offer_id,
        matched_at=confirmation.matched_at
    )


@router.get("/requests/{request_id}/audit", response_model=List[AuditEntryResponse])
async def request_audit_trail(
    request_id: int = Path(..., ge=1, description="Help request ID"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """Match transitions recorded for a request, most recent first."""
    return await get_audit_trail(db, request_id=request_id, limit=limit)
