"""
Help request models.

A help request is created by someone who needs assistance: a traveler who
wants a companion on a flight, or a passenger who needs an airport pickup.
Both families share one table and are told apart by ``domain``.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, Time, DateTime, ForeignKey,
    Enum, Numeric, CheckConstraint, Index
)
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from helpmatch.app.db.session import Base
from helpmatch.app.models.enums import ServiceDomain, AMOUNT_BOUNDS
from helpmatch.app.services.itinerary import normalize_code


class HelpRequest(Base):
    """
    Common shape of a help request.

    Match state lives on the request: ``matched_offer_id`` is the only link
    between a request and the offer it is bound to. ``version`` is bumped by
    every match transition and guards them against concurrent writers.
    """
    __tablename__ = "help_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    domain = Column(Enum(ServiceDomain), nullable=False, index=True)

    # Owner (identity is managed outside this service)
    requester_id = Column(Integer, nullable=False, index=True)

    # Shared itinerary detail; part of the key for flight companions only
    flight_number = Column(String(20), nullable=False)

    # Economic term
    offered_amount = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)

    preferred_language = Column(String(50), nullable=True)

    # Lifecycle
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_matched = Column(Boolean, default=False, nullable=False, index=True)
    matched_offer_id = Column(Integer, ForeignKey("help_offers.id"), nullable=True, index=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, default=1, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"polymorphic_on": domain}
    __table_args__ = (
        CheckConstraint(
            "offered_amount >= 0 AND ("
            "(domain = 'FLIGHT_COMPANION' AND offered_amount <= 500) OR "
            "(domain = 'PICKUP' AND offered_amount <= 200))",
            name="ck_help_requests_offered_amount",
        ),
        CheckConstraint(
            "passenger_count IS NULL OR passenger_count >= 1",
            name="ck_help_requests_passenger_count",
        ),
        CheckConstraint(
            "NOT is_matched OR matched_offer_id IS NOT NULL",
            name="ck_help_requests_matched_offer",
        ),
    )

    @validates("offered_amount")
    def _validate_offered_amount(self, key, value):
        bound = AMOUNT_BOUNDS.get(self.__mapper__.polymorphic_identity)
        if value is None or value < 0 or (bound is not None and value > bound):
            raise ValueError(f"offered_amount must be between 0 and {bound}")
        return value

    @validates("flight_number")
    def _normalize_flight_number(self, key, value):
        return normalize_code(value)

    def __repr__(self):
        return (
            f"<{type(self).__name__}(id={self.id}, requester_id={self.requester_id}, "
            f"matched={self.is_matched}, offer={self.matched_offer_id})>"
        )


class FlightCompanionRequest(HelpRequest):
    """Traveler looking for a companion on a specific flight."""

    airline = Column(String(50), nullable=True)
    flight_date = Column(Date, nullable=True, index=True)
    departure_airport = Column(String(10), nullable=True)
    arrival_airport = Column(String(10), nullable=True)

    traveler_name = Column(String(100), nullable=True)
    traveler_age = Column(String(20), nullable=True)  # "Elderly", "Adult", ...
    special_needs = Column(String(500), nullable=True)  # "Wheelchair, translation"

    @validates("departure_airport", "arrival_airport")
    def _normalize_airport(self, key, value):
        return normalize_code(value)

    __mapper_args__ = {"polymorphic_identity": ServiceDomain.FLIGHT_COMPANION, "polymorphic_load": "inline"}


class PickupRequest(HelpRequest):
    """Passenger arriving at an airport who needs a ride."""

    airport = Column(String(10), nullable=True)
    arrival_date = Column(Date, nullable=True, index=True)
    arrival_time = Column(Time, nullable=True)

    destination_address = Column(String(200), nullable=True)
    passenger_count = Column(Integer, nullable=True, default=1)
    has_luggage = Column(Boolean, nullable=True, default=True)
    special_requests = Column(String(500), nullable=True)

    @validates("airport")
    def _normalize_airport(self, key, value):
        return normalize_code(value)

    __mapper_args__ = {"polymorphic_identity": ServiceDomain.PICKUP, "polymorphic_load": "inline"}


Index(
    "ix_help_requests_expiry",
    HelpRequest.__table__.c.is_active,
    HelpRequest.__table__.c.is_matched,
    HelpRequest.__table__.c.domain,
)
