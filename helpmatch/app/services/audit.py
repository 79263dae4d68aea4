"""
Audit logging service for match transitions.

Audit rows are written inside the caller's transaction, so a transition and
its audit record commit or roll back together.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from helpmatch.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    MATCH_CONFIRMED = "MATCH_CONFIRMED"
    MATCH_CANCELLED = "MATCH_CANCELLED"
    REQUESTS_EXPIRED = "REQUESTS_EXPIRED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    request_id: Optional[int] = None,
    offer_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit record to the current transaction.

    Args:
        db: Database session (caller owns the transaction)
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action, None for system actions
        request_id: Help request involved
        offer_id: Help offer involved
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance (flushed, not committed)
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        request_id=request_id,
        offer_id=offer_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    request_id: Optional[int] = None,
    offer_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if request_id:
        query = query.where(AuditLog.request_id == request_id)

    if offer_id:
        query = query.where(AuditLog.offer_id == offer_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
