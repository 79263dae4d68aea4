"""
Notification API Endpoints.

Read side of the in-app match notifications. Identity is managed outside
this service, so the recipient is addressed by id.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from typing import List

from helpmatch.app.core.dependencies import get_db
from helpmatch.app.models.notification import Notification
from helpmatch.app.schemas.notification import NotificationResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/users/{user_id}", response_model=List[NotificationResponse])
async def list_notifications(
    user_id: int = Path(..., ge=1),
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    """List a user's notifications, newest first."""
    query = select(Notification).where(Notification.user_id == user_id)

    if unread_only:
        query = query.where(Notification.is_read.is_(False))

    query = query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
