"""Shared test fixtures for the engagement escrow test suite.

Provides:
    - An in-memory SQLite database and one session per test
    - Settings tuned for tests (no retry backoff, short processor timeout)
    - A SimulatedProcessor, a recording notifier and a controllable clock
    - Actors for both sides of a deal, an admin and the system
    - Factories that walk an engagement to the stage a test starts from
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from engagement_escrow.config import Settings
from engagement_escrow.domain.actors import SYSTEM_ACTOR, Actor
from engagement_escrow.domain.enums import ActorRole, OfferAction
from engagement_escrow.infrastructure.database.orm_models import Base, EngagementRequest
from engagement_escrow.infrastructure.payments import SimulatedProcessor
from engagement_escrow.services import (
    DisputeResolver,
    EngagementLifecycle,
    EscrowLedger,
    OfferNegotiation,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from engagement_escrow.domain.enums import NotificationKind
    from engagement_escrow.infrastructure.database.orm_models import (
        Engagement,
        EscrowPayment,
    )

SEEKER_COMPANY = "acme-corp"
PROVIDER_ID = "provider-ada"
PAYOUT_DESTINATION = "acct_ada_payouts"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@dataclass
class RecordingNotifier:
    sent: list[tuple[NotificationKind, dict]] = field(default_factory=list)

    async def notify(self, kind: NotificationKind, **payload: object) -> None:
        self.sent.append((kind, payload))

    def kinds(self) -> list[str]:
        return [kind.value for kind, _ in self.sent]


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite://",
        processor_timeout_seconds=0.5,
        processor_max_attempts=3,
        processor_backoff_seconds=0,
        processor_backoff_max_seconds=0,
    )


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[AsyncSession, None]:
    """A session on a fresh in-memory database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with factory() as db_session:
        yield db_session

    await engine.dispose()


@pytest.fixture
def processor() -> SimulatedProcessor:
    return SimulatedProcessor()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=UTC))


# ---------------------------------------------------------------------------
# Actor Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def seeker() -> Actor:
    return Actor(id="seeker-bob", role=ActorRole.SEEKER, company_id=SEEKER_COMPANY)


@pytest.fixture
def other_seeker() -> Actor:
    return Actor(id="seeker-eve", role=ActorRole.SEEKER, company_id="globex")


@pytest.fixture
def provider() -> Actor:
    return Actor(id=PROVIDER_ID, role=ActorRole.PROVIDER)


@pytest.fixture
def other_provider() -> Actor:
    return Actor(id="provider-mallory", role=ActorRole.PROVIDER)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-root", role=ActorRole.ADMIN)


@pytest.fixture
def system() -> Actor:
    return SYSTEM_ACTOR


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def negotiation(session, settings, notifier, clock) -> OfferNegotiation:
    return OfferNegotiation(session, settings, notifier, clock=clock)


@pytest.fixture
def ledger(session, settings, processor, notifier, clock) -> EscrowLedger:
    return EscrowLedger(session, settings, processor, notifier, clock)


@pytest.fixture
def lifecycle(session, settings, notifier, clock, ledger) -> EngagementLifecycle:
    return EngagementLifecycle(session, settings, notifier=notifier, clock=clock, ledger=ledger)


@pytest.fixture
def resolver(session, settings, processor, notifier, clock) -> DisputeResolver:
    return DisputeResolver(session, settings, processor, notifier, clock)


# ---------------------------------------------------------------------------
# Scenario Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engagement_request(session) -> EngagementRequest:
    request = EngagementRequest(seeker_company_id=SEEKER_COMPANY, title="Data platform migration")
    session.add(request)
    await session.flush()
    return request


@pytest_asyncio.fixture
async def staged_engagement(
    negotiation, lifecycle, engagement_request, seeker, provider
) -> Engagement:
    """Rate 100 x 120h accepted by the provider: total 12000."""
    offer = await negotiation.create_offer(
        seeker,
        request_id=engagement_request.id,
        provider_id=PROVIDER_ID,
        rate="100",
        duration_hours="120",
    )
    result = await negotiation.respond(provider, offer.id, OfferAction.ACCEPT)
    return await lifecycle.create_from_handoff(result.handoff)


@pytest_asyncio.fixture
async def active_engagement(
    lifecycle, ledger, staged_engagement, seeker, provider
) -> Engagement:
    """Staged engagement walked to active, with the provider's payout account set up."""
    await lifecycle.schedule_interview(seeker, staged_engagement.id)
    await lifecycle.accept(seeker, staged_engagement.id)
    await lifecycle.activate(seeker, staged_engagement.id)
    await ledger.register_payout_account(provider, PROVIDER_ID, PAYOUT_DESTINATION)
    return staged_engagement


@pytest_asyncio.fixture
async def held_payment(ledger, active_engagement, seeker) -> EscrowPayment:
    payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
    return await ledger.hold_payment(seeker, payment.id)


@pytest_asyncio.fixture
async def in_progress_engagement(lifecycle, active_engagement, held_payment, provider) -> Engagement:
    """Active engagement with 12000 held in escrow and work started."""
    return await lifecycle.start(provider, active_engagement.id)

