#!/usr/bin/env python3
"""Engagement Escrow: End-to-End Simulation.

Plays three scenarios with SeekerBot, ProviderBot and AdminBot against the
services, using the in-memory payment processor:

    Scenario 1: Happy Path
        - Seeker offers 90/h, provider counters at 100/h, seeker accepts
        - Engagement walks staged -> active, escrow of 12000 is held
        - Work completes -> 10200 released to the provider, 1800 platform fee

    Scenario 2: Flaky Processor
        - Capture fails twice with transient errors -> retried with the same key
        - Transfer times out on every attempt -> payment stays held
        - The seeker retries the release -> money moves exactly once

    Scenario 3: Dispute With Partial Refund
        - Seeker files a quality dispute mid-work -> engagement frozen
        - Admin refunds 3000 and terminates -> remainder released net of fee

Usage:
    # Option A: Against the configured database (DATABASE_URL, e.g. PostgreSQL):
    uv run python simulation.py

    # Option B: SQLite in-memory:
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from engagement_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from engagement_escrow.config import get_settings  # noqa: E402
from engagement_escrow.domain.actors import Actor  # noqa: E402
from engagement_escrow.domain.enums import ActorRole, DisputeOutcome, OfferAction  # noqa: E402
from engagement_escrow.domain.exceptions import PaymentProcessorError  # noqa: E402
from engagement_escrow.infrastructure.database.orm_models import EngagementRequest  # noqa: E402
from engagement_escrow.infrastructure.payments import SimulatedProcessor  # noqa: E402
from engagement_escrow.services import (  # noqa: E402
    DisputeResolver,
    EngagementLifecycle,
    EscrowLedger,
    MilestoneSpec,
    OfferNegotiation,
)

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_processor = SimulatedProcessor()
_settings = get_settings().model_copy(
    update={"processor_timeout_seconds": 0.2, "processor_backoff_seconds": 0.05}
)


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False):
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        from engagement_escrow.infrastructure.database.orm_models import Base

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            echo=False,
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from engagement_escrow.infrastructure.database.engine import init_db
        await init_db()


async def get_session():
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from engagement_escrow.infrastructure.database.engine import _get_session_factory
    factory = _get_session_factory()
    return factory()


async def shutdown_database():
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from engagement_escrow.infrastructure.database.engine import close_db
        await close_db()


@dataclass
class Services:
    negotiation: OfferNegotiation
    lifecycle: EngagementLifecycle
    ledger: EscrowLedger
    resolver: DisputeResolver


def build_services(session: Any) -> Services:
    ledger = EscrowLedger(session, _settings, _processor)
    return Services(
        negotiation=OfferNegotiation(session, _settings),
        lifecycle=EngagementLifecycle(session, _settings, ledger=ledger),
        ledger=ledger,
        resolver=DisputeResolver(session, _settings, _processor),
    )


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SeekerBot:
    """Simulated seeker company: posts requests, makes offers, funds escrow."""

    company_id: str = "acme-corp"
    user_id: str = "seeker-bob"

    @property
    def actor(self) -> Actor:
        return Actor(id=self.user_id, role=ActorRole.SEEKER, company_id=self.company_id)

    async def post_request(self, session: Any, title: str) -> EngagementRequest:
        request = EngagementRequest(seeker_company_id=self.company_id, title=title)
        session.add(request)
        await session.commit()
        logger.info("SEEKER: Request posted", request_id=str(request.id), title=title)
        return request

    async def make_offer(
        self, svc: Services, request_id: Any, provider_id: str, rate: str, hours: str
    ) -> Any:
        offer = await svc.negotiation.create_offer(
            self.actor,
            request_id=request_id,
            provider_id=provider_id,
            rate=rate,
            duration_hours=hours,
        )
        logger.info(
            "SEEKER: Offer made",
            offer_id=str(offer.id),
            rate=str(offer.rate),
            total=str(offer.total_amount),
        )
        return offer

    async def onboard(self, svc: Services, engagement_id: Any) -> None:
        """Interview, accept and activate the candidate."""
        await svc.lifecycle.schedule_interview(self.actor, engagement_id)
        await svc.lifecycle.accept(self.actor, engagement_id)
        await svc.lifecycle.activate(self.actor, engagement_id)
        logger.info("SEEKER: Engagement activated", engagement_id=str(engagement_id))

    async def fund(self, svc: Services, engagement_id: Any) -> Any:
        payment = await svc.ledger.create_escrow_payment(
            self.actor, engagement_id, payment_method="pm_card_visa"
        )
        payment = await svc.ledger.hold_payment(self.actor, payment.id)
        logger.info(
            "SEEKER: Escrow held",
            payment_id=str(payment.id),
            amount=str(payment.amount),
        )
        return payment


@dataclass
class ProviderBot:
    """Simulated provider: answers offers and does the work."""

    provider_id: str = "provider-ada"
    payout_destination: str = "acct_ada_payouts"

    @property
    def actor(self) -> Actor:
        return Actor(id=self.provider_id, role=ActorRole.PROVIDER)

    async def register_payouts(self, svc: Services) -> None:
        await svc.ledger.register_payout_account(
            self.actor, self.provider_id, self.payout_destination
        )
        logger.info("PROVIDER: Payout account registered", destination=self.payout_destination)

    async def counter(self, svc: Services, offer_id: Any, rate: str) -> None:
        await svc.negotiation.respond(
            self.actor, offer_id, OfferAction.COUNTER, counter_rate=rate, message="Senior rate"
        )
        logger.info("PROVIDER: Countered", offer_id=str(offer_id), counter_rate=rate)


@dataclass
class AdminBot:
    """Simulated marketplace admin: reviews and settles disputes."""

    admin_id: str = "admin-root"

    @property
    def actor(self) -> Actor:
        return Actor(id=self.admin_id, role=ActorRole.ADMIN)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_payment(payment: Any) -> None:
    """Pretty-print the money split of an escrow payment."""
    print(f"  Status:           {payment.status}")
    print(f"  Amount:           {payment.amount} {payment.currency}")
    print(f"  Refunded:         {payment.refunded_amount}")
    print(f"  Platform fee:     {payment.platform_fee}")
    print(f"  Provider payout:  {payment.provider_amount}")
    balanced = payment.amount == (
        payment.refunded_amount + payment.platform_fee + payment.provider_amount
    )
    print(f"  Balanced:         {'yes' if balanced else 'NO'}")


def print_processor_trail() -> None:
    """Print every processor call made so far, with its idempotency key."""
    print("\n  Processor calls:")
    for i, (operation, key) in enumerate(_processor.calls, 1):
        print(f"    {i}. {operation:<17} {key}")
    print()


async def negotiate_and_onboard(
    session: Any, seeker: SeekerBot, provider: ProviderBot, title: str
) -> tuple[Services, Any]:
    """Shared opening: offer 90/h, counter 100/h, accept, activate."""
    svc = build_services(session)
    request = await seeker.post_request(session, title)

    offer = await seeker.make_offer(svc, request.id, provider.provider_id, "90", "120")
    await provider.counter(svc, offer.id, "100")
    result = await svc.negotiation.respond(seeker.actor, offer.id, OfferAction.ACCEPT)
    engagement = await svc.lifecycle.create_from_handoff(
        result.handoff,
        milestones=[
            MilestoneSpec("Discovery", percentage=Decimal("25")),
            MilestoneSpec("Delivery", percentage=Decimal("75")),
        ],
    )
    await session.commit()

    await seeker.onboard(svc, engagement.id)
    await provider.register_payouts(svc)
    await session.commit()
    return svc, engagement


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path (counter-offer, escrow, release)")
    seeker, provider = SeekerBot(), ProviderBot()

    session = await get_session()
    async with session:
        svc, engagement = await negotiate_and_onboard(
            session, seeker, provider, "Data platform migration"
        )

        section("Funding escrow")
        payment = await seeker.fund(svc, engagement.id)
        await session.commit()

        section("Doing the work")
        await svc.lifecycle.start(provider.actor, engagement.id)
        for milestone in engagement.milestones:
            await svc.lifecycle.start_milestone(provider.actor, engagement.id, milestone.position)
            await svc.lifecycle.complete_milestone(seeker.actor, engagement.id, milestone.position)
        await session.commit()

        section("Completing and releasing")
        await svc.lifecycle.complete(
            seeker.actor, engagement.id, deliverables=["runbook", "pipeline repo"]
        )
        await session.commit()

        print_payment(payment)
        print_processor_trail()


# ===========================================================================
# Scenario 2: Flaky Processor
# ===========================================================================
async def scenario_2_flaky_processor() -> None:
    banner("SCENARIO 2: Flaky Processor (retries, timeouts, safe re-release)")
    seeker, provider = SeekerBot(company_id="globex", user_id="seeker-eve"), ProviderBot()

    session = await get_session()
    async with session:
        svc, engagement = await negotiate_and_onboard(session, seeker, provider, "API hardening")

        section("Capture with two transient failures")
        _processor.fail_next("capture_charge", times=2)
        payment = await seeker.fund(svc, engagement.id)
        await session.commit()

        await svc.lifecycle.start(provider.actor, engagement.id)
        await session.commit()

        section("Release while transfers time out")
        _processor.set_latency("transfer", 1.0)
        try:
            await svc.lifecycle.complete(seeker.actor, engagement.id, deliverables=["report"])
        except PaymentProcessorError as exc:
            print(f"  Release failed ({exc.kind.value}): {exc.message}")
            print(f"  Payment still {payment.status}; engagement still {engagement.status}")

        section("Processor recovers; seeker retries")
        _processor.set_latency("transfer", 0)
        await svc.lifecycle.complete(seeker.actor, engagement.id, deliverables=["report"])
        await session.commit()

        print_payment(payment)
        print(f"  Transfers made: {len(_processor.transfers)}")
        print_processor_trail()


# ===========================================================================
# Scenario 3: Dispute With Partial Refund
# ===========================================================================
async def scenario_3_dispute() -> None:
    banner("SCENARIO 3: Dispute With Partial Refund")
    seeker, provider, admin = SeekerBot(), ProviderBot(), AdminBot()

    session = await get_session()
    async with session:
        svc, engagement = await negotiate_and_onboard(session, seeker, provider, "Mobile rewrite")
        payment = await seeker.fund(svc, engagement.id)
        await svc.lifecycle.start(provider.actor, engagement.id)
        await session.commit()

        section("Seeker files a dispute")
        dispute = await svc.resolver.file(
            seeker.actor, engagement.id, "quality", "Half the screens are missing"
        )
        await session.commit()
        print(f"  Dispute {dispute.id} is {dispute.status}; engagement is {engagement.status}")

        section("Admin reviews and settles")
        await svc.resolver.begin_review(admin.actor, dispute.id)
        await svc.resolver.resolve(
            admin.actor,
            dispute.id,
            "Refund a quarter, end the engagement",
            refund_amount=Decimal("3000"),
            engagement_outcome=DisputeOutcome.TERMINATE,
        )
        await svc.resolver.close(admin.actor, dispute.id)
        await session.commit()

        print(f"  Engagement is {engagement.status}")
        print_payment(payment)
        print_processor_trail()


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_flaky_processor,
    3: scenario_3_dispute,
}


async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "=" * 70)
        print("  ENGAGEMENT ESCROW: SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "PostgreSQL"
        print(f"  Database: {db_type}")
        print("  Processor: simulated")
        print("=" * 70 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(num: int, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    await init_database(use_sqlite=use_sqlite)

    try:
        if num not in SCENARIOS:
            print(f"Unknown scenario {num}. Available: 1, 2, 3")
            return
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Engagement Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database.",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
