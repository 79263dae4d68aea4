"""
Notification Service.

Match notifications for requesters and helpers. The confirmation service
only sees the ``MatchNotifier`` protocol and calls it after a transition has
committed; delivery failures never reach the caller of ``confirm_match``.
"""

import logging
from typing import Optional, Dict, Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpmatch.app.core.redis_client import publish_match_event
from helpmatch.app.core.reliability import CircuitBreaker, CircuitOpenError
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.models.notification import Notification, NotificationType

logger = logging.getLogger("helpmatch.notifications")

DOMAIN_LABELS = {
    ServiceDomain.FLIGHT_COMPANION: "flight companion",
    ServiceDomain.PICKUP: "airport pickup",
}


class MatchNotifier(Protocol):
    """Collaborator told about match transitions. Return values are ignored."""

    async def notify_match_confirmed(
        self,
        requester_id: int,
        helper_id: int,
        domain: ServiceDomain,
        details: Dict[str, Any]
    ) -> None:
        ...

    async def notify_match_cancelled(
        self,
        requester_id: int,
        helper_id: int,
        domain: ServiceDomain,
        details: Dict[str, Any]
    ) -> None:
        ...


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif


class InAppMatchNotifier:
    """
    Default notifier.

    Writes one in-app notification per party in its own session, then
    publishes a JSON event on the match events channel. Publishing goes
    through a circuit breaker; a Redis outage is logged and the in-app rows
    are kept.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        redis,
        channel: str,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._session_factory = session_factory
        self._redis = redis
        self._channel = channel
        self._breaker = circuit_breaker or CircuitBreaker(failure_threshold=3, reset_timeout=30)

    async def notify_match_confirmed(
        self,
        requester_id: int,
        helper_id: int,
        domain: ServiceDomain,
        details: Dict[str, Any]
    ) -> None:
        label = DOMAIN_LABELS.get(domain, "help")
        await self._dispatch(
            event="match_confirmed",
            type=NotificationType.MATCH_CONFIRMED,
            recipients=(
                (requester_id, "Match confirmed", f"Your {label} request has been matched with a helper."),
                (helper_id, "New match", f"Your {label} offer has been matched with a request."),
            ),
            requester_id=requester_id,
            helper_id=helper_id,
            domain=domain,
            details=details
        )

    async def notify_match_cancelled(
        self,
        requester_id: int,
        helper_id: int,
        domain: ServiceDomain,
        details: Dict[str, Any]
    ) -> None:
        label = DOMAIN_LABELS.get(domain, "help")
        await self._dispatch(
            event="match_cancelled",
            type=NotificationType.MATCH_CANCELLED,
            recipients=(
                (requester_id, "Match cancelled", f"The match for your {label} request was cancelled."),
                (helper_id, "Match cancelled", f"The match for your {label} offer was cancelled."),
            ),
            requester_id=requester_id,
            helper_id=helper_id,
            domain=domain,
            details=details
        )

    async def _dispatch(
        self,
        event: str,
        type: NotificationType,
        recipients,
        requester_id: int,
        helper_id: int,
        domain: ServiceDomain,
        details: Dict[str, Any]
    ) -> None:
        payload = {
            "event": event,
            "domain": domain.value,
            "requester_id": requester_id,
            "helper_id": helper_id,
            **details,
        }

        async with self._session_factory() as session:
            async with session.begin():
                for user_id, title, message in recipients:
                    await NotificationService.create_notification(
                        session,
                        user_id=user_id,
                        title=title,
                        message=message,
                        type=type,
                        metadata=payload
                    )

        try:
            await self._breaker.call(publish_match_event, self._redis, self._channel, payload)
        except CircuitOpenError:
            logger.warning("Match event publisher circuit open, skipped %s event", event)
        except Exception as e:
            logger.error("Failed to publish %s event: %s", event, e)
