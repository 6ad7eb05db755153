"""SQLAlchemy 2.0 ORM models for the engagement escrow service.

Seven tables:
    1. engagement_requests - seeker-owned requests that offers are made against.
    2. offers              - negotiated rate/duration per (request, provider).
    3. engagements         - the working relationship created from an accepted offer.
    4. milestones          - ordered partial-amount checkpoints of an engagement.
    5. escrow_payments     - funds held against an engagement.
    6. payout_accounts     - provider payout destinations at the processor.
    7. disputes            - holds placed on an engagement by a participant.

Design decisions:
    - UUIDs as primary keys.
    - Numeric(14, 2) for money, Decimal in Python.
    - CHECK constraints on every status column, generated from the domain enums.
    - Partial unique indexes enforce "at most one open X" rules at the DB level.
    - JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime  # noqa: TC003 - needed at runtime by Mapped[]
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from engagement_escrow.domain.clock import utc_now
from engagement_escrow.domain.enums import (
    DisputeOutcome,
    DisputeReason,
    DisputeStatus,
    EngagementStatus,
    EscrowStatus,
    MilestoneStatus,
    OfferStatus,
    PartyType,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(14, 2)


def _one_of(column: str, values: type[enum.Enum], nullable: bool = False) -> str:
    quoted = ", ".join(f"'{v.value}'" for v in values)
    clause = f"{column} IN ({quoted})"
    return f"{column} IS NULL OR {clause}" if nullable else clause


def _partial(condition: str) -> dict:
    """Index kwargs for a partial index on both supported backends."""
    return {
        "postgresql_where": text(condition),
        "sqlite_where": text(condition),
    }


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )


# ---------------------------------------------------------------------------
# 1. engagement_requests
# ---------------------------------------------------------------------------
class EngagementRequest(TimestampMixin, Base):
    """A seeker company's request for talent. Managed elsewhere; read here."""

    __tablename__ = "engagement_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seeker_company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")

    __table_args__ = (Index("idx_request_company", "seeker_company_id"),)

    def __repr__(self) -> str:
        return f"<EngagementRequest id={self.id} company={self.seeker_company_id}>"


# ---------------------------------------------------------------------------
# 2. offers
# ---------------------------------------------------------------------------
class Offer(TimestampMixin, Base):
    """A proposed rate and duration for one seeker/provider pairing."""

    __tablename__ = "offers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("engagement_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    seeker_company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Terms ---
    rate: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    duration_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Amounts (recomputed on accept from the agreed rate) ---
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    provider_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # --- Negotiation ---
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OfferStatus.PENDING.value
    )
    awaiting_party: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=PartyType.PROVIDER.value,
        comment="Which side must respond next",
    )
    counter_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    counter_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    countered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(_one_of("status", OfferStatus), name="ck_offer_valid_status"),
        CheckConstraint(_one_of("awaiting_party", PartyType), name="ck_offer_awaiting_party"),
        CheckConstraint("rate > 0", name="ck_offer_positive_rate"),
        CheckConstraint("duration_hours > 0", name="ck_offer_positive_duration"),
        Index(
            "uq_offer_open_pair",
            "request_id",
            "provider_id",
            unique=True,
            **_partial("status IN ('pending', 'countered')"),
        ),
        Index("idx_offer_request", "request_id"),
        Index("idx_offer_provider", "provider_id"),
    )

    def __repr__(self) -> str:
        return f"<Offer id={self.id} status={self.status} rate={self.rate}>"


# ---------------------------------------------------------------------------
# 3. engagements
# ---------------------------------------------------------------------------
class Engagement(TimestampMixin, Base):
    """The working relationship derived from an accepted offer."""

    __tablename__ = "engagements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    offer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("offers.id"), nullable=False, unique=True
    )
    request_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    seeker_company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Financials ---
    rate: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    facilitation_fee: Mapped[Decimal] = mapped_column(
        Money, nullable=False, comment="Facilitation fee schedule, informational"
    )

    # --- Status ---
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EngagementStatus.STAGED.value
    )
    pre_dispute_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # --- Schedule ---
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    terminated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # --- Completion ---
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliverables: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    verification: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment='Approval record, e.g. {"approved_by": "...", "approved_at": "..."}',
    )

    milestones: Mapped[list[Milestone]] = relationship(
        "Milestone",
        back_populates="engagement",
        cascade="all, delete-orphan",
        order_by="Milestone.position.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_one_of("status", EngagementStatus), name="ck_engagement_valid_status"),
        CheckConstraint(
            _one_of("pre_dispute_status", EngagementStatus, nullable=True),
            name="ck_engagement_pre_dispute_status",
        ),
        CheckConstraint("total_amount >= 0", name="ck_engagement_total"),
        Index("idx_engagement_status", "status"),
        Index("idx_engagement_provider", "provider_id"),
        Index("idx_engagement_company", "seeker_company_id"),
    )

    def __repr__(self) -> str:
        return f"<Engagement id={self.id} status={self.status} total={self.total_amount}>"


# ---------------------------------------------------------------------------
# 4. milestones
# ---------------------------------------------------------------------------
class Milestone(Base):
    __tablename__ = "milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("engagements.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MilestoneStatus.PENDING.value
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    engagement: Mapped[Engagement] = relationship("Engagement", back_populates="milestones")

    __table_args__ = (
        CheckConstraint(_one_of("status", MilestoneStatus), name="ck_milestone_valid_status"),
        CheckConstraint("amount >= 0", name="ck_milestone_non_negative"),
        UniqueConstraint("engagement_id", "position", name="uq_milestone_position"),
    )

    def __repr__(self) -> str:
        return f"<Milestone #{self.position} {self.title!r} status={self.status}>"


# ---------------------------------------------------------------------------
# 5. escrow_payments
# ---------------------------------------------------------------------------
class EscrowPayment(TimestampMixin, Base):
    """Funds captured from the seeker and held until release or refund.

    amount == refunded_amount + platform_fee + provider_amount at every step.
    """

    __tablename__ = "escrow_payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("engagements.id"), nullable=False
    )

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    provider_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    refunded_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)
    released_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=0)

    # --- Status ---
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EscrowStatus.PENDING.value
    )
    payment_method: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Processor references ---
    payment_intent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    transfer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    refund_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    destination: Mapped[str | None] = mapped_column(String(128), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    held_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(_one_of("status", EscrowStatus), name="ck_escrow_valid_status"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint("refunded_amount >= 0", name="ck_escrow_refunded_non_negative"),
        Index(
            "uq_escrow_unsettled_engagement",
            "engagement_id",
            unique=True,
            **_partial("status IN ('pending', 'held')"),
        ),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_engagement", "engagement_id"),
    )

    def __repr__(self) -> str:
        return f"<EscrowPayment id={self.id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 6. payout_accounts
# ---------------------------------------------------------------------------
class PayoutAccount(TimestampMixin, Base):
    __tablename__ = "payout_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    destination: Mapped[str] = mapped_column(
        String(128), nullable=False, comment="Processor account id receiving transfers"
    )
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<PayoutAccount provider={self.provider_id} enabled={self.payouts_enabled}>"


# ---------------------------------------------------------------------------
# 7. disputes
# ---------------------------------------------------------------------------
class Dispute(TimestampMixin, Base):
    """A hold placed on an engagement and its escrow by a participant."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    engagement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("engagements.id"), nullable=False
    )
    escrow_payment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("escrow_payments.id"), nullable=True
    )

    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    filed_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    filed_by_type: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DisputeStatus.OPEN.value
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    engagement_outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(_one_of("status", DisputeStatus), name="ck_dispute_valid_status"),
        CheckConstraint(_one_of("reason", DisputeReason), name="ck_dispute_valid_reason"),
        CheckConstraint(_one_of("filed_by_type", PartyType), name="ck_dispute_filer_type"),
        CheckConstraint(
            _one_of("engagement_outcome", DisputeOutcome, nullable=True),
            name="ck_dispute_outcome",
        ),
        Index(
            "uq_dispute_non_closed_engagement",
            "engagement_id",
            unique=True,
            **_partial("status <> 'closed'"),
        ),
        Index("idx_dispute_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} status={self.status} reason={self.reason}>"
