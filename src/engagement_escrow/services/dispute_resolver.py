"""Dispute filing and resolution.

Filing a dispute freezes the engagement (status `disputed`, prior status
recorded) and, through the blocking-dispute guard, every escrow movement for
it. An engagement that already ended but still has money held in escrow can be
disputed too; its status stays as it is and only the escrow is frozen.

Only an admin can move a dispute forward. Resolution settles money first and
updates statuses only after the processor confirmed the settlement.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from engagement_escrow.config import Settings, get_settings
from engagement_escrow.domain.clock import Clock, utc_now
from engagement_escrow.domain.enums import (
    DisputeOutcome,
    DisputeReason,
    DisputeStatus,
    EngagementStatus,
    EscrowStatus,
    NotificationKind,
    PartyType,
)
from engagement_escrow.domain.exceptions import ConflictError, InputValidationError
from engagement_escrow.domain.fees import to_money
from engagement_escrow.domain.state_machine import DisputeStateMachine
from engagement_escrow.infrastructure.database.orm_models import Dispute
from engagement_escrow.infrastructure.database.repositories import (
    BLOCKING_DISPUTE_STATUSES,
    DisputeRepository,
    EngagementRepository,
    EscrowPaymentRepository,
)
from engagement_escrow.infrastructure.notifications import LoggingNotifier, dispatch
from engagement_escrow.logging_config import get_logger
from engagement_escrow.services.engagement_lifecycle import EngagementLifecycle
from engagement_escrow.services.escrow_ledger import EscrowLedger
from engagement_escrow.services.guards import (
    authorize,
    fire_transition,
    get_or_raise,
    is_participant,
    require_text,
)

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from engagement_escrow.domain.actors import Actor
    from engagement_escrow.domain.processor_protocol import Notifier, PaymentProcessor
    from engagement_escrow.infrastructure.database.orm_models import Engagement

logger = get_logger(__name__)

SETTLED_ENGAGEMENT_STATUSES = (
    EngagementStatus.COMPLETED.value,
    EngagementStatus.TERMINATED.value,
    EngagementStatus.CANCELLED.value,
)


class DisputeResolver:
    """Owns Dispute records; drives the engagement and escrow on resolution."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        processor: PaymentProcessor | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._disputes = DisputeRepository(session)
        self._engagements = EngagementRepository(session)
        self._payments = EscrowPaymentRepository(session)
        self._ledger = EscrowLedger(session, self._settings, processor, self._notifier, clock)
        self._lifecycle = EngagementLifecycle(
            session, self._settings, notifier=self._notifier, clock=clock, ledger=self._ledger
        )

    async def file(
        self,
        actor: Actor,
        engagement_id: uuid.UUID,
        reason: DisputeReason | str,
        description: str,
    ) -> Dispute:
        """Open a dispute and freeze the engagement.

        Raises:
            ForbiddenError: Caller is neither the seeker company nor the provider.
            ConflictError: A non-closed dispute exists, or the engagement ended with
                nothing left in escrow.
        """
        engagement: Engagement = await get_or_raise(self._engagements, engagement_id)
        authorize(
            is_participant(actor, engagement),
            "Only the seeker company or the provider can file a dispute",
        )
        try:
            reason = DisputeReason(reason)
        except ValueError as err:
            raise InputValidationError(f"Unknown dispute reason: {reason}", field="reason") from err
        description = require_text(description, "description")

        existing = await self._disputes.get_non_closed_for_engagement(engagement.id)
        if existing is not None:
            raise ConflictError(
                f"Engagement {engagement.id} already has dispute {existing.id} ({existing.status})",
                code="DUPLICATE_DISPUTE",
            )

        payment = await self._payments.get_unsettled_for_engagement(engagement.id)
        escrow_only = (
            engagement.status in SETTLED_ENGAGEMENT_STATUSES
            and payment is not None
            and payment.status == EscrowStatus.HELD.value
        )
        if not escrow_only:
            await self._lifecycle.freeze_for_dispute(engagement)

        dispute = Dispute(
            engagement_id=engagement.id,
            escrow_payment_id=payment.id if payment else None,
            reason=reason.value,
            description=description,
            filed_by_id=actor.id,
            filed_by_type=actor.party().value,
            status=DisputeStatus.OPEN.value,
        )
        try:
            dispute = await self._disputes.create(dispute)
        except IntegrityError as err:
            raise ConflictError(
                f"Engagement {engagement.id} already has an open dispute",
                code="DUPLICATE_DISPUTE",
            ) from err

        logger.info(
            "dispute.filed",
            dispute_id=str(dispute.id),
            engagement_id=str(engagement.id),
            reason=reason.value,
            filed_by=actor.id,
            escrow_only=escrow_only,
            escrow_payment_id=str(dispute.escrow_payment_id) if payment else None,
        )
        other_party = (
            engagement.provider_id
            if actor.party() is PartyType.SEEKER
            else engagement.seeker_company_id
        )
        await dispatch(
            self._notifier,
            NotificationKind.DISPUTE_CREATED,
            dispute_id=dispute.id,
            engagement_id=engagement.id,
            recipient=other_party,
        )
        return dispute

    async def begin_review(self, actor: Actor, dispute_id: uuid.UUID) -> Dispute:
        authorize(actor.is_admin, "Only an admin can review disputes")
        dispute: Dispute = await get_or_raise(self._disputes, dispute_id)
        current = dispute.status
        new_status = fire_transition(DisputeStateMachine, "dispute", current, "begin_review")
        await self._disputes.transition(dispute, current, status=new_status)
        logger.info("dispute.under_review", dispute_id=str(dispute.id), reviewer=actor.id)
        return dispute

    async def resolve(
        self,
        actor: Actor,
        dispute_id: uuid.UUID,
        resolution: str,
        refund_amount: Decimal | int | str | None = None,
        engagement_outcome: DisputeOutcome | str = DisputeOutcome.RESTORE,
        destination: str | None = None,
    ) -> Dispute:
        """Settle the dispute: refund first (if any), then statuses.

        A partial refund releases the remainder to the provider, less the
        platform fee on the remainder.
        The engagement outcome only applies to a frozen engagement; one that had
        already ended keeps its status.

        Raises:
            ForbiddenError: Caller is not an admin.
            InputValidationError: refund_amount is not in (0, held amount].
            ConflictError: A refund was asked for but nothing is held.
        """
        authorize(actor.is_admin, "Only an admin can resolve disputes")
        dispute: Dispute = await get_or_raise(self._disputes, dispute_id)
        current = dispute.status
        new_status = fire_transition(DisputeStateMachine, "dispute", current, "resolve")
        resolution = require_text(resolution, "resolution")
        try:
            outcome = DisputeOutcome(engagement_outcome)
        except ValueError as err:
            raise InputValidationError(
                f"Unknown engagement outcome: {engagement_outcome}",
                field="engagement_outcome",
            ) from err

        refund = None
        if refund_amount is not None:
            refund = to_money(refund_amount, "refund_amount")
            payment = await self._payments.get_held_for_engagement(dispute.engagement_id)
            if payment is None:
                raise ConflictError(
                    f"Engagement {dispute.engagement_id} has no held escrow to refund",
                    code="ESCROW_NOT_HELD",
                )
            if refund <= 0 or refund > payment.amount:
                raise InputValidationError(
                    f"refund_amount must be greater than 0 and at most {payment.amount}",
                    field="refund_amount",
                )
            await self._ledger.settle_dispute(
                payment, refund, reason=f"dispute {dispute.id}: {resolution}", destination=destination
            )

        await self._disputes.transition(
            dispute,
            current,
            status=new_status,
            resolution=resolution,
            engagement_outcome=outcome.value,
            refund_amount=refund,
            resolved_by=actor.id,
            resolved_at=self._clock(),
        )
        engagement: Engagement = await get_or_raise(self._engagements, dispute.engagement_id)
        if engagement.status == EngagementStatus.DISPUTED.value:
            await self._lifecycle.settle_after_dispute(engagement, outcome)

        logger.info(
            "dispute.resolved",
            dispute_id=str(dispute.id),
            outcome=outcome.value,
            refund_amount=str(refund) if refund is not None else None,
            engagement_status=engagement.status,
        )
        await dispatch(
            self._notifier,
            NotificationKind.DISPUTE_RESOLVED,
            dispute_id=dispute.id,
            engagement_id=engagement.id,
            outcome=outcome.value,
        )
        return dispute

    async def close(
        self, actor: Actor, dispute_id: uuid.UUID, notes: str | None = None
    ) -> Dispute:
        """Close a dispute. Closing one that was never resolved restores the engagement."""
        authorize(actor.is_admin, "Only an admin can close disputes")
        dispute: Dispute = await get_or_raise(self._disputes, dispute_id)
        current = dispute.status
        new_status = fire_transition(DisputeStateMachine, "dispute", current, "close")

        values = {"status": new_status, "closed_at": self._clock()}
        if notes:
            values["resolution"] = notes
        await self._disputes.transition(dispute, current, **values)

        if current in BLOCKING_DISPUTE_STATUSES:
            engagement: Engagement = await get_or_raise(self._engagements, dispute.engagement_id)
            if engagement.status == EngagementStatus.DISPUTED.value:
                await self._lifecycle.settle_after_dispute(engagement, DisputeOutcome.RESTORE)

        logger.info("dispute.closed", dispute_id=str(dispute.id), from_status=current)
        return dispute

    async def get_open_dispute(self, engagement_id: uuid.UUID) -> Dispute | None:
        """The open or under-review dispute blocking an engagement, if any."""
        return await self._disputes.get_blocking_for_engagement(engagement_id)

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        return await get_or_raise(self._disputes, dispute_id)
