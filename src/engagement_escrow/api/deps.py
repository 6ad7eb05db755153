"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the calling actor, configured collaborators and the services built on them.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import redis.asyncio as aioredis  # noqa: TC002 - resolved at runtime by FastAPI
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_escrow.config import Settings, get_settings
from engagement_escrow.domain.actors import Actor
from engagement_escrow.domain.enums import ActorRole
from engagement_escrow.domain.exceptions import InputValidationError
from engagement_escrow.domain.processor_protocol import (
    CandidateSource,
    Notifier,
    PaymentProcessor,
)
from engagement_escrow.infrastructure.database.engine import get_async_session
from engagement_escrow.infrastructure.notifications import LoggingNotifier
from engagement_escrow.infrastructure.payments import build_processor
from engagement_escrow.infrastructure.redis_client import get_redis
from engagement_escrow.services import (
    DisputeResolver,
    EngagementLifecycle,
    EscrowLedger,
    OfferNegotiation,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_processor(settings: Settings = Depends(get_app_settings)) -> PaymentProcessor:
    return build_processor(settings)


def get_notifier() -> Notifier:
    return LoggingNotifier()


def get_candidate_source() -> CandidateSource | None:
    """Provider ranking for engagement requests.

    Matching runs upstream of this service; deployments that expose it override
    this dependency. Without one, offers are not checked against a ranking.
    """
    return None


def get_optional_redis() -> aioredis.Redis | None:
    """Provide the Redis client, or None when it was unavailable at startup."""
    try:
        return get_redis()
    except RuntimeError:
        return None


def get_actor(
    x_actor_id: str = Header(..., min_length=1, max_length=64),
    x_actor_role: str = Header(...),
    x_company_id: str | None = Header(default=None, max_length=64),
) -> Actor:
    """Build the caller identity from headers set by the upstream auth layer."""
    try:
        role = ActorRole(x_actor_role)
    except ValueError as err:
        raise InputValidationError(
            f"Unknown actor role: {x_actor_role}", field="X-Actor-Role"
        ) from err
    return Actor(id=x_actor_id, role=role, company_id=x_company_id)


# --- Services ---


def get_offer_negotiation(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    notifier: Notifier = Depends(get_notifier),
    candidates: CandidateSource | None = Depends(get_candidate_source),
) -> OfferNegotiation:
    return OfferNegotiation(session, settings, notifier, candidates=candidates)


def get_escrow_ledger(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    processor: PaymentProcessor = Depends(get_processor),
    notifier: Notifier = Depends(get_notifier),
) -> EscrowLedger:
    return EscrowLedger(session, settings, processor, notifier)


def get_engagement_lifecycle(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
    notifier: Notifier = Depends(get_notifier),
) -> EngagementLifecycle:
    return EngagementLifecycle(session, settings, notifier=notifier, ledger=ledger)


def get_dispute_resolver(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    processor: PaymentProcessor = Depends(get_processor),
    notifier: Notifier = Depends(get_notifier),
) -> DisputeResolver:
    return DisputeResolver(session, settings, processor, notifier)
