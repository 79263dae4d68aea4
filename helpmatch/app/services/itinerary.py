"""
Itinerary keys.

The itinerary key is the set of fields a request and an offer must share
before they are even considered for scoring:

- flight companion: flight number, flight date, departure and arrival airport
  (all exact);
- pickup: airport and arrival date (exact) plus arrival time within a
  tolerance window.
"""

from datetime import date, time
from typing import NamedTuple, Optional, Union

from helpmatch.app.models.enums import ServiceDomain


class FlightItineraryKey(NamedTuple):
    flight_number: str
    flight_date: date
    departure_airport: str
    arrival_airport: str


class PickupItineraryKey(NamedTuple):
    airport: str
    arrival_date: date
    arrival_time: Optional[time]


ItineraryKey = Union[FlightItineraryKey, PickupItineraryKey]


def normalize_code(value: Optional[str]) -> Optional[str]:
    """Canonical form for flight numbers and airport codes ("nz 289" -> "NZ289")."""
    if value is None:
        return None
    return "".join(value.split()).upper()


def itinerary_key(listing) -> ItineraryKey:
    """Build the itinerary key of a request or offer from its domain fields."""
    if listing.domain == ServiceDomain.FLIGHT_COMPANION:
        return FlightItineraryKey(
            flight_number=normalize_code(listing.flight_number),
            flight_date=listing.flight_date,
            departure_airport=normalize_code(listing.departure_airport),
            arrival_airport=normalize_code(listing.arrival_airport),
        )
    if listing.domain == ServiceDomain.PICKUP:
        return PickupItineraryKey(
            airport=normalize_code(listing.airport),
            arrival_date=listing.arrival_date,
            arrival_time=listing.arrival_time,
        )
    raise ValueError(f"Unknown service domain: {listing.domain!r}")


def minutes_apart(first: time, second: time) -> int:
    """Absolute distance between two times of the same day, in minutes."""
    first_minutes = first.hour * 60 + first.minute
    second_minutes = second.hour * 60 + second.minute
    return abs(first_minutes - second_minutes)


def keys_compatible(request_key: ItineraryKey, offer_key: ItineraryKey, time_tolerance_minutes: int) -> bool:
    if type(request_key) is not type(offer_key):
        return False

    if isinstance(request_key, FlightItineraryKey):
        return request_key == offer_key

    if request_key.airport != offer_key.airport or request_key.arrival_date != offer_key.arrival_date:
        return False
    # A slot without a time serves the whole day
    if request_key.arrival_time is None or offer_key.arrival_time is None:
        return True
    return minutes_apart(request_key.arrival_time, offer_key.arrival_time) <= time_tolerance_minutes


def is_itinerary_compatible(request, offer, time_tolerance_minutes: int) -> bool:
    """True when the offer serves the request's itinerary."""
    if request.domain != offer.domain:
        return False
    return keys_compatible(itinerary_key(request), itinerary_key(offer), time_tolerance_minutes)
