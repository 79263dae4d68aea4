"""
Help offer models.

A help offer is published by a helper: someone flying a given route who can
accompany a traveler, or a driver serving an airport arrival slot.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, Time, DateTime, Enum, Numeric,
    CheckConstraint, Index
)
from sqlalchemy.orm import validates, synonym
from sqlalchemy.sql import func
from helpmatch.app.db.session import Base
from helpmatch.app.models.enums import ServiceDomain, AMOUNT_BOUNDS
from helpmatch.app.services.itinerary import normalize_code


class HelpOffer(Base):
    """
    Common shape of a help offer.

    ``price`` is the helper's asking amount (``requested_amount`` for flight
    companions, ``base_rate`` for pickups). Rating and experience columns
    are maintained by the review flow and only read here.
    """
    __tablename__ = "help_offers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    domain = Column(Enum(ServiceDomain), nullable=False, index=True)

    # Owner
    helper_id = Column(Integer, nullable=False, index=True)

    # Economic term
    price = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)

    languages = Column(String(100), nullable=True)  # "Chinese, English"

    # Availability
    is_available = Column(Boolean, default=True, nullable=False, index=True)
    version = Column(Integer, default=1, nullable=False)

    # Track record
    helped_count = Column(Integer, default=0, nullable=False)
    average_rating = Column(Numeric(3, 2, asdecimal=False), default=0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"polymorphic_on": domain}
    __table_args__ = (
        CheckConstraint(
            "price >= 0 AND ("
            "(domain = 'FLIGHT_COMPANION' AND price <= 500) OR "
            "(domain = 'PICKUP' AND price <= 200))",
            name="ck_help_offers_price",
        ),
        CheckConstraint(
            "average_rating >= 0 AND average_rating <= 5",
            name="ck_help_offers_average_rating",
        ),
        CheckConstraint(
            "remaining_seats IS NULL OR (remaining_seats >= 0 AND remaining_seats <= max_passengers)",
            name="ck_help_offers_remaining_seats",
        ),
    )

    @validates("price")
    def _validate_price(self, key, value):
        bound = AMOUNT_BOUNDS.get(self.__mapper__.polymorphic_identity)
        if value is None or value < 0 or (bound is not None and value > bound):
            raise ValueError(f"price must be between 0 and {bound}")
        return value

    def __repr__(self):
        return (
            f"<{type(self).__name__}(id={self.id}, helper_id={self.helper_id}, "
            f"available={self.is_available})>"
        )


class FlightCompanionOffer(HelpOffer):
    """
    Helper flying a given route. One-to-one: a confirmed match takes the
    offer off the market.
    """

    flight_number = Column(String(20), nullable=True)
    airline = Column(String(50), nullable=True)
    flight_date = Column(Date, nullable=True)
    departure_airport = Column(String(10), nullable=True)
    arrival_airport = Column(String(10), nullable=True)

    available_services = Column(String(200), nullable=True)  # "Translation, Navigation"
    additional_info = Column(String(1000), nullable=True)

    requested_amount = synonym("price")

    @validates("flight_number", "departure_airport", "arrival_airport")
    def _normalize_code(self, key, value):
        return normalize_code(value)

    __mapper_args__ = {"polymorphic_identity": ServiceDomain.FLIGHT_COMPANION, "polymorphic_load": "inline"}


class PickupOffer(HelpOffer):
    """
    Driver serving an arrival slot at an airport. Capacity is shared:
    each confirmed request consumes ``passenger_count`` of ``remaining_seats``.
    """

    airport = Column(String(10), nullable=True)
    arrival_date = Column(Date, nullable=True)
    arrival_time = Column(Time, nullable=True)

    vehicle_type = Column(String(100), nullable=True)  # "Sedan", "SUV", "Van"
    max_passengers = Column(Integer, nullable=True, default=4)
    remaining_seats = Column(Integer, nullable=True)
    can_handle_luggage = Column(Boolean, nullable=True, default=True)
    service_area = Column(String(200), nullable=True)  # "North Shore, City"
    additional_services = Column(String(500), nullable=True)

    base_rate = synonym("price")
    total_pickups = synonym("helped_count")

    @validates("airport")
    def _normalize_airport(self, key, value):
        return normalize_code(value)

    __mapper_args__ = {"polymorphic_identity": ServiceDomain.PICKUP, "polymorphic_load": "inline"}

    def __init__(self, **kwargs):
        kwargs.setdefault("max_passengers", 4)
        kwargs.setdefault("remaining_seats", kwargs["max_passengers"])
        super().__init__(**kwargs)


# Candidate lookups filter on the itinerary key before anything else
Index(
    "ix_help_offers_flight_itinerary",
    HelpOffer.__table__.c.domain,
    HelpOffer.__table__.c.flight_number,
    HelpOffer.__table__.c.flight_date,
    HelpOffer.__table__.c.is_available,
)
Index(
    "ix_help_offers_pickup_itinerary",
    HelpOffer.__table__.c.domain,
    HelpOffer.__table__.c.airport,
    HelpOffer.__table__.c.arrival_date,
    HelpOffer.__table__.c.is_available,
)
