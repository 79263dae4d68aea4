"""
Audit Log Database Model.

Records every match transition so that who bound which request to which
offer, and when, can be reconstructed after the fact.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from helpmatch.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for match transitions.

    Events logged:
    - MATCH_CONFIRMED / MATCH_CANCELLED
    - REQUESTS_EXPIRED (one row per sweep)
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Entities involved in the transition
    request_id = Column(Integer, index=True, nullable=True)
    offer_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', request={self.request_id}, offer={self.offer_id})>"
