"""
Expiry sweep.

Requests whose flight or arrival date has passed can no longer be served.
They are soft-deactivated (``is_active = False``); nothing is deleted and
matched requests are left alone.
"""

import logging
from datetime import date

from sqlalchemy import update, and_, or_
from sqlalchemy.ext.asyncio import async_sessionmaker

from helpmatch.app.db.session import begin_write
from helpmatch.app.models.enums import ServiceDomain
from helpmatch.app.models.help_request import HelpRequest
from helpmatch.app.services.audit import log_event, AuditAction

logger = logging.getLogger("helpmatch.expiry")


async def deactivate_expired_requests(session_factory: async_sessionmaker, today: date) -> int:
    """
    Deactivate active, unmatched requests dated before ``today``.

    Returns:
        Number of requests deactivated
    """
    requests = HelpRequest.__table__

    async with session_factory() as session:
        async with session.begin():
            await begin_write(session)
            result = await session.execute(
                update(HelpRequest)
                .where(
                    HelpRequest.is_active.is_(True),
                    HelpRequest.is_matched.is_(False),
                    or_(
                        and_(
                            HelpRequest.domain == ServiceDomain.FLIGHT_COMPANION,
                            requests.c.flight_date < today
                        ),
                        and_(
                            HelpRequest.domain == ServiceDomain.PICKUP,
                            requests.c.arrival_date < today
                        )
                    )
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            expired = result.rowcount or 0

            if expired:
                await log_event(
                    session,
                    action=AuditAction.REQUESTS_EXPIRED,
                    metadata={"count": expired, "cutoff": today.isoformat()}
                )

    logger.info("Expiry sweep before %s deactivated %d request(s)", today.isoformat(), expired)
    return expired
