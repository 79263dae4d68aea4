"""
Outcomes of the matching operations.

Not-found, conflict, invalid input and storage outages are ordinary results
of ``find_matches`` / ``confirm_match`` and are returned, not raised. The
HTTP layer turns them into error responses.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from helpmatch.app.services.scoring import ScoreBreakdown


class ResultStatus(str, enum.Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID = "INVALID"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class MatchCandidate:
    offer: object
    breakdown: ScoreBreakdown
    reason: str = ""


@dataclass
class MatchQueryResult:
    status: ResultStatus
    request: Optional[object] = None
    matches: List[MatchCandidate] = field(default_factory=list)
    candidates_evaluated: int = 0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK


@dataclass(frozen=True)
class MatchConfirmation:
    request_id: int
    offer_id: int
    matched_at: Optional[datetime]


@dataclass
class ConfirmationResult:
    status: ResultStatus
    confirmation: Optional[MatchConfirmation] = None
    message: str = ""
    # True when the request was already bound to this offer and nothing changed
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK
