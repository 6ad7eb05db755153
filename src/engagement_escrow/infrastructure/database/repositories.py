"""Repository classes for database access.

Repositories encapsulate all SQL and never manage their own transactions:
they flush, the caller's session commits or rolls back.

Status changes go through `transition`, an UPDATE guarded by the status the
caller validated against. If another writer moved the row first, zero rows
match and ConcurrentModificationError is raised instead of overwriting.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from sqlalchemy import select, update

from engagement_escrow.domain.clock import utc_now
from engagement_escrow.domain.enums import (
    DisputeStatus,
    EscrowStatus,
    OfferStatus,
)
from engagement_escrow.domain.exceptions import ConcurrentModificationError
from engagement_escrow.infrastructure.database.orm_models import (
    Dispute,
    Engagement,
    EngagementRequest,
    EscrowPayment,
    Milestone,
    Offer,
    PayoutAccount,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

ModelT = TypeVar("ModelT")

OPEN_OFFER_STATUSES = (OfferStatus.PENDING.value, OfferStatus.COUNTERED.value)
UNSETTLED_ESCROW_STATUSES = (EscrowStatus.PENDING.value, EscrowStatus.HELD.value)
BLOCKING_DISPUTE_STATUSES = (DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


class _Repository(Generic[ModelT]):
    """Shared get/create/transition for a single model."""

    model: ClassVar[type]
    entity_name: ClassVar[str]

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, obj: ModelT) -> ModelT:
        self._session.add(obj)
        await self._session.flush()
        return obj

    async def get_by_id(self, entity_id: uuid.UUID) -> ModelT | None:
        result = await self._session.execute(
            select(self.model).where(self.model.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def transition(self, obj: ModelT, expected_status: str, **values: Any) -> ModelT:
        """Write `values` only if the row still has `expected_status`.

        Call AFTER state machine validation. In-memory attributes of `obj`
        are synchronized from `values` on success.
        """
        await self._session.flush()
        values = {key: _plain(v) for key, v in values.items()}
        if hasattr(self.model, "updated_at"):
            values.setdefault("updated_at", utc_now())
        expected = _plain(expected_status)
        result = await self._session.execute(
            update(self.model)
            .where(self.model.id == obj.id, self.model.status == expected)
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(self.entity_name, obj.id, expected)
        return obj


class EngagementRequestRepository(_Repository[EngagementRequest]):
    model = EngagementRequest
    entity_name = "Engagement request"


class OfferRepository(_Repository[Offer]):
    """Data access for offers."""

    model = Offer
    entity_name = "Offer"

    async def get_open_for_pair(
        self, request_id: uuid.UUID, provider_id: str
    ) -> Offer | None:
        """The non-terminal offer for (request, provider), if any."""
        result = await self._session.execute(
            select(Offer).where(
                Offer.request_id == request_id,
                Offer.provider_id == provider_id,
                Offer.status.in_(OPEN_OFFER_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def list(
        self,
        request_id: uuid.UUID | None = None,
        provider_id: str | None = None,
        status: OfferStatus | None = None,
    ) -> list[Offer]:
        stmt = select(Offer).order_by(Offer.created_at.desc())
        if request_id is not None:
            stmt = stmt.where(Offer.request_id == request_id)
        if provider_id is not None:
            stmt = stmt.where(Offer.provider_id == provider_id)
        if status is not None:
            stmt = stmt.where(Offer.status == status.value)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def decline_siblings(self, offer: Offer, responded_at: Any) -> int:
        """Decline every other open offer on the same request. Returns the count."""
        result = await self._session.execute(
            update(Offer)
            .where(
                Offer.request_id == offer.request_id,
                Offer.id != offer.id,
                Offer.status.in_(OPEN_OFFER_STATUSES),
            )
            .values(
                status=OfferStatus.DECLINED.value,
                responded_at=responded_at,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount


class EngagementRepository(_Repository[Engagement]):
    model = Engagement
    entity_name = "Engagement"

    async def get_by_offer(self, offer_id: uuid.UUID) -> Engagement | None:
        result = await self._session.execute(
            select(Engagement).where(Engagement.offer_id == offer_id)
        )
        return result.scalar_one_or_none()


class MilestoneRepository(_Repository[Milestone]):
    model = Milestone
    entity_name = "Milestone"

    async def get_by_position(
        self, engagement_id: uuid.UUID, position: int
    ) -> Milestone | None:
        result = await self._session.execute(
            select(Milestone).where(
                Milestone.engagement_id == engagement_id,
                Milestone.position == position,
            )
        )
        return result.scalar_one_or_none()

    async def count_incomplete_before(self, engagement_id: uuid.UUID, position: int) -> int:
        result = await self._session.execute(
            select(Milestone.id).where(
                Milestone.engagement_id == engagement_id,
                Milestone.position < position,
                Milestone.status != "completed",
            )
        )
        return len(result.all())


class EscrowPaymentRepository(_Repository[EscrowPayment]):
    """Data access for escrow payments."""

    model = EscrowPayment
    entity_name = "Escrow payment"

    async def get_unsettled_for_engagement(
        self, engagement_id: uuid.UUID
    ) -> EscrowPayment | None:
        """The pending or held payment for an engagement, if any."""
        result = await self._session.execute(
            select(EscrowPayment).where(
                EscrowPayment.engagement_id == engagement_id,
                EscrowPayment.status.in_(UNSETTLED_ESCROW_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def get_held_for_engagement(
        self, engagement_id: uuid.UUID
    ) -> EscrowPayment | None:
        result = await self._session.execute(
            select(EscrowPayment).where(
                EscrowPayment.engagement_id == engagement_id,
                EscrowPayment.status == EscrowStatus.HELD.value,
            )
        )
        return result.scalar_one_or_none()


class PayoutAccountRepository(_Repository[PayoutAccount]):
    model = PayoutAccount
    entity_name = "Payout account"

    async def get_by_provider(self, provider_id: str) -> PayoutAccount | None:
        result = await self._session.execute(
            select(PayoutAccount).where(PayoutAccount.provider_id == provider_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self, provider_id: str, destination: str, payouts_enabled: bool
    ) -> PayoutAccount:
        account = await self.get_by_provider(provider_id)
        if account is None:
            account = PayoutAccount(
                provider_id=provider_id,
                destination=destination,
                payouts_enabled=payouts_enabled,
            )
            return await self.create(account)
        account.destination = destination
        account.payouts_enabled = payouts_enabled
        await self._session.flush()
        return account


class DisputeRepository(_Repository[Dispute]):
    """Data access for disputes."""

    model = Dispute
    entity_name = "Dispute"

    async def get_non_closed_for_engagement(
        self, engagement_id: uuid.UUID
    ) -> Dispute | None:
        result = await self._session.execute(
            select(Dispute).where(
                Dispute.engagement_id == engagement_id,
                Dispute.status != DisputeStatus.CLOSED.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_blocking_for_engagement(
        self, engagement_id: uuid.UUID
    ) -> Dispute | None:
        """The open or under-review dispute freezing an engagement, if any."""
        result = await self._session.execute(
            select(Dispute).where(
                Dispute.engagement_id == engagement_id,
                Dispute.status.in_(BLOCKING_DISPUTE_STATUSES),
            )
        )
        return result.scalar_one_or_none()
