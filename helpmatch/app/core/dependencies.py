"""
Service dependencies for FastAPI.

Composition root of the matching services: every endpoint receives its
collaborators from here, and tests swap them through
``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from helpmatch.app.core.config import settings, matching_settings, MatchingSettings
from helpmatch.app.core.redis_client import get_redis
from helpmatch.app.core.reliability import CircuitBreaker
from helpmatch.app.db.session import get_session_factory
from helpmatch.app.services.candidate_repository import CandidateRepository
from helpmatch.app.services.matcher import Matcher
from helpmatch.app.services.match_confirmation import MatchConfirmationService
from helpmatch.app.services.notification_service import InAppMatchNotifier, MatchNotifier

# Shared across requests so failures accumulate
match_events_breaker = CircuitBreaker(failure_threshold=3, reset_timeout=30)


async def get_db(session_factory: async_sessionmaker = Depends(get_session_factory)):
    """
    FastAPI dependency for database sessions.

    Yields an async database session and ensures it's properly closed.
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_matching_settings() -> MatchingSettings:
    return matching_settings


def get_repository(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> CandidateRepository:
    return CandidateRepository(session_factory)


async def get_notifier(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    redis=Depends(get_redis)
) -> MatchNotifier:
    return InAppMatchNotifier(
        session_factory,
        redis,
        channel=settings.match_events_channel,
        circuit_breaker=match_events_breaker
    )


def get_matcher(
    repository: CandidateRepository = Depends(get_repository),
    matching: MatchingSettings = Depends(get_matching_settings)
) -> Matcher:
    return Matcher(repository, matching)


def get_confirmation_service(
    repository: CandidateRepository = Depends(get_repository),
    notifier: MatchNotifier = Depends(get_notifier),
    matching: MatchingSettings = Depends(get_matching_settings)
) -> MatchConfirmationService:
    return MatchConfirmationService(repository, notifier, matching)
