"""
Matcher: ranked offers for a help request.

Read-only. Candidates come from the itinerary-keyed repository query, go
through the scoring hard filters, and are ranked by score with the
deterministic tie-break from ``scoring.ranking_key``.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from helpmatch.app.core.config import MatchingSettings
from helpmatch.app.services.candidate_repository import CandidateRepository
from helpmatch.app.services.itinerary import itinerary_key
from helpmatch.app.services.results import MatchCandidate, MatchQueryResult, ResultStatus
from helpmatch.app.services.scoring import score_offer, ranking_key, recommendation_reason

logger = logging.getLogger("helpmatch.matching")


class Matcher:
    """Answers "which offers could serve this request, best first"."""

    def __init__(self, repository: CandidateRepository, settings: MatchingSettings):
        self.repository = repository
        self.settings = settings

    async def find_matches(self, request_id: int, max_results: int) -> MatchQueryResult:
        """
        Rank available offers for an active, unmatched request.

        Args:
            request_id: Help request to match
            max_results: Upper bound on returned matches (>= 1)

        Returns:
            MatchQueryResult with status OK and the ranked matches, or
            INVALID / NOT_FOUND / UNAVAILABLE
        """
        if max_results is None or max_results < 1:
            return MatchQueryResult(
                status=ResultStatus.INVALID,
                message="max_results must be at least 1"
            )
        if request_id is None or request_id < 1:
            return MatchQueryResult(
                status=ResultStatus.INVALID,
                message="request_id must be a positive integer"
            )

        try:
            request = await self.repository.get_active_unmatched_request(request_id)
            if request is None:
                logger.info("Request %s is missing, inactive or already matched", request_id)
                return MatchQueryResult(
                    status=ResultStatus.NOT_FOUND,
                    message=f"Help request {request_id} not found, inactive or already matched"
                )

            offers = await self.repository.get_available_offers_by_itinerary_key(
                request.domain,
                itinerary_key(request),
                exclude_owner_id=request.requester_id
            )
        except SQLAlchemyError:
            logger.exception("Candidate lookup failed for request %s", request_id)
            return MatchQueryResult(
                status=ResultStatus.UNAVAILABLE,
                message="Storage temporarily unavailable"
            )

        logger.info(
            "Found %d potential %s offers for request %s",
            len(offers), request.domain.value, request_id
        )

        matches = []
        for offer in offers:
            breakdown = score_offer(request, offer, self.settings)
            if breakdown is None:
                continue
            matches.append(MatchCandidate(
                offer=offer,
                breakdown=breakdown,
                reason=recommendation_reason(request, offer, breakdown)
            ))

        matches.sort(key=lambda match: ranking_key(match.offer, match.breakdown))
        matches = matches[:max_results]

        logger.info("Returning %d matches for request %s", len(matches), request_id)

        return MatchQueryResult(
            status=ResultStatus.OK,
            request=request,
            matches=matches,
            candidates_evaluated=len(offers)
        )
