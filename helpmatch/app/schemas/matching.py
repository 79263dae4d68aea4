"""
Matching schemas.

Request/response bodies of the match endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from helpmatch.app.models.enums import ServiceDomain


class ConfirmMatchRequest(BaseModel):
    """Schema for confirming a request/offer pair."""
    request_id: int = Field(..., ge=1, description="Help request to bind")
    offer_id: int = Field(..., ge=1, description="Help offer to bind it to")


class ScoreBreakdownResponse(BaseModel):
    reputation: float
    experience: float
    language: float
    price: float
    capability: Optional[float] = None
    service_area: Optional[float] = None


class MatchCandidateResponse(BaseModel):
    """One ranked offer."""
    offer_id: int
    helper_id: int
    score: float = Field(..., ge=0, le=1)
    breakdown: ScoreBreakdownResponse
    recommendation_reason: str
    price: float
    languages: Optional[str] = None
    average_rating: Optional[float] = None
    rating_count: int = 0
    helped_count: int = 0
    remaining_seats: Optional[int] = None  # pickup only


class MatchListResponse(BaseModel):
    request_id: int
    domain: ServiceDomain
    matches: List[MatchCandidateResponse]
    total_candidates_evaluated: int


class MatchConfirmationResponse(BaseModel):
    """Response after confirming or cancelling a match."""
    request_id: int
    offer_id: int
    matched_at: Optional[datetime]
    replayed: bool = False


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    actor_id: Optional[int]
    request_id: Optional[int]
    offer_id: Optional[int]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime
