"""
Compatibility scoring between a help request and a candidate offer.

Pure functions, no I/O. ``score_offer`` returns ``None`` when the offer fails
a hard filter (itinerary, price ceiling, pickup capacity or luggage); such
offers are dropped from the candidate set instead of being scored as zero.
Every sub-score lies in [0, 1] and the overall score is their weighted mean.
"""

import re
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from helpmatch.app.core.config import MatchingSettings
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.services.itinerary import is_itinerary_compatible


# (minimum completed services, score), highest tier first
FLIGHT_EXPERIENCE_TIERS = ((20, 1.0), (10, 0.75), (5, 0.5), (1, 0.25))
PICKUP_EXPERIENCE_TIERS = ((50, 1.0), (20, 0.75), (10, 0.5), (5, 0.35), (1, 0.2))
NEWCOMER_EXPERIENCE = 0.1

LANGUAGE_FAMILIES = (
    {"chinese", "mandarin", "cantonese"},
)

# Traveler ages that call for assistance the helper should list as a service
ASSISTED_AGE_GROUPS = ("elderly", "senior", "child", "minor", "infant")


@dataclass(frozen=True)
class ScoreBreakdown:
    """Overall score plus the sub-scores it was built from."""
    overall: float
    reputation: float
    experience: float
    language: float
    price: float
    capability: Optional[float] = None  # flight companion only
    service_area: Optional[float] = None  # pickup only

    def as_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)


def _split_terms(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [term.strip().lower() for term in re.split(r"[,;/]", text) if term.strip()]


def _tiered(count: int, tiers) -> float:
    for minimum, score in tiers:
        if (count or 0) >= minimum:
            return score
    return NEWCOMER_EXPERIENCE


def price_fit(budget: float, price: float, tolerance_ratio: float) -> Optional[float]:
    """
    How well the helper's price fits the requester's budget.

    1.0 at or below budget, falling linearly to 0.0 at
    ``budget * (1 + tolerance_ratio)``; ``None`` beyond that ceiling.
    """
    budget = float(budget or 0)
    price = float(price or 0)
    if price <= budget:
        return 1.0
    ceiling = budget * (1 + tolerance_ratio)
    if price > ceiling:
        return None
    return round(1.0 - (price - budget) / (ceiling - budget), 4)


def reputation_score(offer, neutral: float) -> float:
    """Average rating on a 0-1 scale; unrated helpers get the neutral default."""
    if not offer.rating_count:
        return neutral
    return round(min(max(float(offer.average_rating or 0) / 5.0, 0.0), 1.0), 4)


def experience_score(offer) -> float:
    if offer.domain == ServiceDomain.PICKUP:
        return _tiered(offer.helped_count, PICKUP_EXPERIENCE_TIERS)
    return _tiered(offer.helped_count, FLIGHT_EXPERIENCE_TIERS)


def language_score(preferred_language: Optional[str], offer_languages: Optional[str]) -> float:
    """
    Compare the requester's language with the languages the helper speaks.

    Exact match 1.0, same language family 0.9, English fallback 0.7,
    mismatch 0.3; 0.5 when either side did not say.
    """
    spoken = _split_terms(offer_languages)
    if not preferred_language or not spoken:
        return 0.5

    wanted = preferred_language.strip().lower()
    if any(wanted == language or wanted in language for language in spoken):
        return 1.0

    for family in LANGUAGE_FAMILIES:
        if any(member in wanted for member in family) and any(
            member in language for language in spoken for member in family
        ):
            return 0.9

    if "english" in spoken:
        return 0.7
    return 0.3


def capability_score(request, offer) -> float:
    """
    Share of the traveler's needs covered by the companion's services.

    Needs come from ``special_needs`` plus the traveler's age group when it
    implies assistance. Matching is case-insensitive containment either way
    ("wheelchair" matches "Wheelchair assistance").
    """
    needs = _split_terms(request.special_needs)
    age = (request.traveler_age or "").lower()
    needs += [group for group in ASSISTED_AGE_GROUPS if group in age]

    if not needs:
        return 1.0

    services = _split_terms(offer.available_services)
    if not services:
        return 0.4

    covered = sum(
        1 for need in needs
        if any(need in service or service in need for service in services)
    )
    return round(0.4 + 0.6 * covered / len(needs), 4)


def service_area_score(request, offer) -> float:
    """How well the driver's service area covers the destination address."""
    areas = _split_terms(offer.service_area)
    destination = (request.destination_address or "").lower()
    if not areas or not destination:
        return 0.5
    if any(area in destination for area in areas):
        return 1.0
    if any(area.startswith("all ") for area in areas):
        return 0.9
    return 0.3


def passes_capacity_filters(request, offer) -> bool:
    """Pickup hard filters: seats and luggage."""
    passengers = request.passenger_count or 1
    if (offer.max_passengers or 0) < passengers:
        return False
    if (offer.remaining_seats or 0) < passengers:
        return False
    has_luggage = True if request.has_luggage is None else request.has_luggage
    if has_luggage and offer.can_handle_luggage is False:
        return False
    return True


def _weighted(components: Dict[str, float], weights: Dict[str, float]) -> float:
    total_weight = sum(weights.get(name, 0.0) for name in components)
    if total_weight <= 0:
        return 0.0
    total = sum(value * weights.get(name, 0.0) for name, value in components.items())
    return round(min(max(total / total_weight, 0.0), 1.0), 4)


def score_offer(request, offer, settings: MatchingSettings) -> Optional[ScoreBreakdown]:
    """
    Score one candidate offer for a request.

    Returns:
        ScoreBreakdown, or None when a hard filter rejects the offer
    """
    if request.domain != offer.domain:
        return None
    if offer.helper_id == request.requester_id:
        return None
    if not is_itinerary_compatible(request, offer, settings.pickup_time_tolerance_minutes):
        return None
    if offer.domain == ServiceDomain.PICKUP and not passes_capacity_filters(request, offer):
        return None

    price = price_fit(request.offered_amount, offer.price, settings.price_tolerance_ratio)
    if price is None:
        return None

    components = {
        "reputation": reputation_score(offer, settings.neutral_reputation),
        "experience": experience_score(offer),
        "language": language_score(request.preferred_language, offer.languages),
        "price": price,
    }

    if offer.domain == ServiceDomain.FLIGHT_COMPANION:
        components["capability"] = capability_score(request, offer)
        weights = settings.flight_companion_weights
    else:
        components["service_area"] = service_area_score(request, offer)
        weights = settings.pickup_weights

    return ScoreBreakdown(overall=_weighted(components, weights), **components)


def ranking_key(offer, breakdown: ScoreBreakdown) -> Tuple:
    """
    Sort key: best score first, then higher reputation, then the offer that
    was published first, then the lower id.
    """
    return (-breakdown.overall, -breakdown.reputation, offer.created_at, offer.id)


def recommendation_reason(request, offer, breakdown: ScoreBreakdown) -> str:
    """Short human-readable justification of a match."""
    reasons = []

    if offer.rating_count and breakdown.reputation >= 0.8:
        reasons.append(f"Highly rated helper ({float(offer.average_rating):.1f}/5.0 stars)")

    if breakdown.experience >= 0.75:
        if offer.domain == ServiceDomain.PICKUP:
            reasons.append(f"Experienced driver ({offer.helped_count} successful pickups)")
        else:
            reasons.append(f"Experienced companion ({offer.helped_count} trips helped)")

    if breakdown.language >= 0.9:
        reasons.append("Speaks your language")

    if breakdown.capability is not None and breakdown.capability >= 0.8 and request.special_needs:
        reasons.append("Covers your specific needs")

    if breakdown.service_area is not None and breakdown.service_area >= 0.9:
        reasons.append("Serves your destination area")

    if offer.domain == ServiceDomain.PICKUP and (offer.remaining_seats or 0) > (request.passenger_count or 1):
        reasons.append("Spacious vehicle available")

    if breakdown.price >= 1.0:
        reasons.append("Within your budget")

    return ", ".join(reasons) if reasons else "Good overall compatibility"
