"""
Shared enumerations for the matching domain.
"""

import enum


class ServiceDomain(str, enum.Enum):
    """
    The two parallel service types.

    FLIGHT_COMPANION: a helper travels on the same flight as the traveler
    PICKUP: a driver collects a passenger at the arrival airport
    """
    FLIGHT_COMPANION = "FLIGHT_COMPANION"
    PICKUP = "PICKUP"


# Upper bound of the economic term per domain (inclusive, same currency unit)
AMOUNT_BOUNDS = {
    ServiceDomain.FLIGHT_COMPANION: 500,
    ServiceDomain.PICKUP: 200,
}
