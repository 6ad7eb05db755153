"""Engagement lifecycle: from an accepted offer to a terminal status.

Every transition runs the same checks in the same order:
    1. the dispute guard (an open or under-review dispute freezes everything),
    2. the state machine,
    3. the caller's relationship to the engagement,
then writes the new status with a status-guarded UPDATE.

Completing with release_payment=True asks EscrowLedger to pay the provider
first and marks the engagement completed only after the transfer succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from engagement_escrow.config import Settings, get_settings
from engagement_escrow.domain.clock import Clock, utc_now
from engagement_escrow.domain.enums import (
    DisputeOutcome,
    EngagementStatus,
    MilestoneStatus,
    NotificationKind,
)
from engagement_escrow.domain.exceptions import (
    ConflictError,
    EntityNotFoundError,
    InputValidationError,
)
from engagement_escrow.domain.fees import ZERO, FeeCalculator, FeeSchedule, round_money, to_decimal
from engagement_escrow.domain.state_machine import (
    EngagementStateMachine,
    MilestoneStateMachine,
)
from engagement_escrow.infrastructure.database.orm_models import Engagement, Milestone
from engagement_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EngagementRepository,
    MilestoneRepository,
)
from engagement_escrow.infrastructure.notifications import LoggingNotifier, dispatch
from engagement_escrow.logging_config import get_logger
from engagement_escrow.services.escrow_ledger import EscrowLedger
from engagement_escrow.services.guards import (
    authorize,
    ensure_not_frozen,
    fire_transition,
    get_or_raise,
    is_participant,
    is_seeker_side,
)

if TYPE_CHECKING:
    import uuid
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

    from engagement_escrow.domain.actors import Actor
    from engagement_escrow.domain.processor_protocol import Notifier, PaymentProcessor
    from engagement_escrow.services.offer_negotiation import EngagementHandoff

logger = get_logger(__name__)

MILESTONE_WORK_STATUSES = (EngagementStatus.ACTIVE.value, EngagementStatus.IN_PROGRESS.value)


@dataclass(frozen=True)
class MilestoneSpec:
    """A milestone as requested at engagement creation.

    Exactly one of `amount` or `percentage` (of the engagement total) is set.
    """

    title: str
    amount: Decimal | int | str | None = None
    percentage: Decimal | int | str | None = None
    due_date: date | None = None


class EngagementLifecycle:
    """Owns Engagement and Milestone records."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        processor: PaymentProcessor | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utc_now,
        ledger: EscrowLedger | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._fees = FeeCalculator(FeeSchedule.from_settings(self._settings))
        self._engagements = EngagementRepository(session)
        self._milestones = MilestoneRepository(session)
        self._disputes = DisputeRepository(session)
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._ledger = ledger or EscrowLedger(
            session, self._settings, processor, self._notifier, clock
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_from_handoff(
        self,
        handoff: EngagementHandoff,
        milestones: list[MilestoneSpec] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Engagement:
        """Create a staged engagement from an accepted offer."""
        existing = await self._engagements.get_by_offer(handoff.offer_id)
        if existing is not None:
            raise ConflictError(
                f"Offer {handoff.offer_id} already has engagement {existing.id}",
                code="ENGAGEMENT_EXISTS",
            )
        start = start_date or handoff.start_date
        if start and end_date and end_date < start:
            raise InputValidationError("end_date must not precede start_date", field="end_date")

        engagement = Engagement(
            offer_id=handoff.offer_id,
            request_id=handoff.request_id,
            seeker_company_id=handoff.seeker_company_id,
            provider_id=handoff.provider_id,
            rate=handoff.rate,
            currency=handoff.currency,
            total_amount=handoff.total_amount,
            facilitation_fee=self._fees.facilitation_fee(handoff.total_amount),
            status=EngagementStatus.STAGED.value,
            start_date=start,
            end_date=end_date,
            milestones=self._build_milestones(handoff.total_amount, milestones or []),
        )
        engagement = await self._engagements.create(engagement)

        logger.info(
            "engagement.created",
            engagement_id=str(engagement.id),
            offer_id=str(handoff.offer_id),
            total=str(engagement.total_amount),
            facilitation_fee=str(engagement.facilitation_fee),
            milestones=len(engagement.milestones),
        )
        return engagement

    def _build_milestones(self, total: Decimal, specs: list[MilestoneSpec]) -> list[Milestone]:
        if not specs:
            return []

        percentages = [s.percentage for s in specs if s.percentage is not None]
        if percentages:
            self._fees.escrow_amount(total, percentages)

        built = []
        for position, spec in enumerate(specs, start=1):
            title = (spec.title or "").strip()
            if not title:
                raise InputValidationError("Milestone title must not be empty", field="milestones")
            if (spec.amount is None) == (spec.percentage is None):
                raise InputValidationError(
                    f"Milestone {position} needs exactly one of amount or percentage",
                    field="milestones",
                )
            if spec.amount is not None:
                amount = round_money(to_decimal(spec.amount, "milestones"))
                if amount < 0:
                    raise InputValidationError(
                        "Milestone amounts must be non-negative", field="milestones"
                    )
            else:
                amount = self._fees.milestone_amount(total, spec.percentage)
            built.append(
                Milestone(
                    position=position,
                    title=title,
                    amount=amount,
                    due_date=spec.due_date,
                    status=MilestoneStatus.PENDING.value,
                )
            )

        allocated = sum((m.amount for m in built), ZERO)
        if allocated != total:
            raise InputValidationError(
                f"Milestones sum to {allocated}, engagement total is {total}",
                field="milestones",
            )
        return built

    # ------------------------------------------------------------------
    # Pre-work pipeline
    # ------------------------------------------------------------------

    async def schedule_interview(self, actor: Actor, engagement_id: uuid.UUID) -> Engagement:
        return await self._seeker_transition(actor, engagement_id, "schedule_interview")

    async def accept(self, actor: Actor, engagement_id: uuid.UUID) -> Engagement:
        return await self._seeker_transition(actor, engagement_id, "accept_candidate")

    async def activate(self, actor: Actor, engagement_id: uuid.UUID) -> Engagement:
        return await self._seeker_transition(actor, engagement_id, "activate")

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def start(self, actor: Actor, engagement_id: uuid.UUID) -> Engagement:
        engagement = await self._participant_transition(
            actor, engagement_id, "begin_work", started_at=self._clock()
        )
        await dispatch(
            self._notifier,
            NotificationKind.ENGAGEMENT_STARTED,
            engagement_id=engagement.id,
            provider_id=engagement.provider_id,
        )
        return engagement

    async def pause(self, actor: Actor, engagement_id: uuid.UUID) -> Engagement:
        return await self._participant_transition(
            actor, engagement_id, "pause_work", paused_at=self._clock()
        )

    async def resume(self, actor: Actor, engagement_id: uuid.UUID) -> Engagement:
        return await self._participant_transition(
            actor, engagement_id, "resume_work", resumed_at=self._clock()
        )

    async def complete(
        self,
        actor: Actor,
        engagement_id: uuid.UUID,
        deliverables: list[Any],
        approved_by: str | None = None,
        notes: str | None = None,
        release_payment: bool = True,
        destination: str | None = None,
    ) -> Engagement:
        """Mark the engagement completed, paying the provider first by default.

        Raises:
            DisputeOpenError: A dispute is open or under review.
            InvalidStateTransitionError: Not active or in progress (including
                already completed).
            ForbiddenError: Caller is not the seeker company or an admin.
            InputValidationError: No deliverables recorded.
        """
        engagement: Engagement = await get_or_raise(self._engagements, engagement_id)
        await ensure_not_frozen(self._disputes, engagement.id)
        current = engagement.status
        new_status = fire_transition(EngagementStateMachine, "engagement", current, "complete")
        authorize(
            is_seeker_side(actor, engagement),
            "Only the seeker company or an admin can complete an engagement",
        )
        if not deliverables:
            raise InputValidationError("At least one deliverable is required", field="deliverables")

        if release_payment:
            await self._ledger.release_for_completion(engagement, destination)

        now = self._clock()
        await self._engagements.transition(
            engagement,
            current,
            status=new_status,
            completed_at=now,
            completion_notes=notes,
            deliverables=list(deliverables),
            verification={
                "approved_by": approved_by or actor.id,
                "approved_at": now.isoformat(),
            },
        )

        logger.info(
            "engagement.completed",
            engagement_id=str(engagement.id),
            payment_released=release_payment,
            deliverables=len(deliverables),
        )
        await dispatch(
            self._notifier,
            NotificationKind.ENGAGEMENT_COMPLETED,
            engagement_id=engagement.id,
            provider_id=engagement.provider_id,
        )
        return engagement

    async def cancel(
        self, actor: Actor, engagement_id: uuid.UUID, notes: str | None = None
    ) -> Engagement:
        """Cancel without touching escrow. A held payment needs an explicit refund."""
        return await self._seeker_transition(
            actor,
            engagement_id,
            "cancel",
            cancelled_at=self._clock(),
            completion_notes=notes,
        )

    async def terminate(
        self, actor: Actor, engagement_id: uuid.UUID, notes: str | None = None
    ) -> Engagement:
        return await self._seeker_transition(
            actor,
            engagement_id,
            "terminate",
            terminated_at=self._clock(),
            completion_notes=notes,
        )

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def start_milestone(
        self, actor: Actor, engagement_id: uuid.UUID, position: int
    ) -> Milestone:
        engagement, milestone = await self._load_milestone(engagement_id, position)
        current = milestone.status
        new_status = fire_transition(MilestoneStateMachine, "milestone", current, "start_milestone")
        authorize(
            actor.is_admin or is_participant(actor, engagement),
            "Only engagement participants can start a milestone",
        )
        await self._check_order(engagement, milestone)

        await self._milestones.transition(
            milestone, current, status=new_status, started_at=self._clock()
        )
        logger.info(
            "milestone.started",
            engagement_id=str(engagement.id),
            position=position,
        )
        return milestone

    async def complete_milestone(
        self, actor: Actor, engagement_id: uuid.UUID, position: int
    ) -> Milestone:
        engagement, milestone = await self._load_milestone(engagement_id, position)
        current = milestone.status
        new_status = fire_transition(
            MilestoneStateMachine, "milestone", current, "complete_milestone"
        )
        authorize(
            is_seeker_side(actor, engagement),
            "Only the seeker company or an admin can sign off a milestone",
        )
        await self._check_order(engagement, milestone)

        await self._milestones.transition(
            milestone, current, status=new_status, completed_at=self._clock()
        )
        logger.info(
            "milestone.completed",
            engagement_id=str(engagement.id),
            position=position,
            amount=str(milestone.amount),
        )
        await dispatch(
            self._notifier,
            NotificationKind.MILESTONE_REACHED,
            engagement_id=engagement.id,
            position=position,
            title=milestone.title,
        )
        return milestone

    async def _load_milestone(
        self, engagement_id: uuid.UUID, position: int
    ) -> tuple[Engagement, Milestone]:
        engagement: Engagement = await get_or_raise(self._engagements, engagement_id)
        await ensure_not_frozen(self._disputes, engagement.id)
        if engagement.status not in MILESTONE_WORK_STATUSES:
            raise ConflictError(
                f"Milestones can only move while the engagement is active or in progress, "
                f"not {engagement.status}",
                code="ENGAGEMENT_NOT_WORKING",
            )
        milestone = await self._milestones.get_by_position(engagement.id, position)
        if milestone is None:
            raise EntityNotFoundError("Milestone", f"{engagement.id}#{position}")
        return engagement, milestone

    async def _check_order(self, engagement: Engagement, milestone: Milestone) -> None:
        if not self._settings.enforce_milestone_order:
            return
        earlier = await self._milestones.count_incomplete_before(engagement.id, milestone.position)
        if earlier:
            raise ConflictError(
                f"{earlier} earlier milestone(s) of engagement {engagement.id} are not completed",
                code="MILESTONE_OUT_OF_ORDER",
            )

    # ------------------------------------------------------------------
    # Dispute hooks (called by DisputeResolver)
    # ------------------------------------------------------------------

    async def freeze_for_dispute(self, engagement: Engagement) -> Engagement:
        """Move to disputed, remembering the interrupted status."""
        current = engagement.status
        new_status = fire_transition(EngagementStateMachine, "engagement", current, "open_dispute")
        await self._engagements.transition(
            engagement, current, status=new_status, pre_dispute_status=current
        )
        logger.info(
            "engagement.frozen",
            engagement_id=str(engagement.id),
            pre_dispute_status=current,
        )
        return engagement

    async def settle_after_dispute(
        self, engagement: Engagement, outcome: DisputeOutcome
    ) -> Engagement:
        """Leave disputed: back to the recorded status, or terminated/cancelled."""
        current = engagement.status
        now = self._clock()
        values: dict[str, Any] = {"pre_dispute_status": None}
        if outcome is DisputeOutcome.RESTORE:
            new_status = fire_transition(
                EngagementStateMachine,
                "engagement",
                current,
                "restore_after_dispute",
                prior_status=engagement.pre_dispute_status,
            )
        elif outcome is DisputeOutcome.TERMINATE:
            new_status = fire_transition(
                EngagementStateMachine, "engagement", current, "terminate_after_dispute"
            )
            values["terminated_at"] = now
        else:
            new_status = fire_transition(
                EngagementStateMachine, "engagement", current, "cancel_after_dispute"
            )
            values["cancelled_at"] = now

        await self._engagements.transition(engagement, current, status=new_status, **values)
        logger.info(
            "engagement.unfrozen",
            engagement_id=str(engagement.id),
            outcome=outcome.value,
            status=new_status,
        )
        return engagement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_engagement(self, engagement_id: uuid.UUID) -> Engagement:
        return await get_or_raise(self._engagements, engagement_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _seeker_transition(
        self, actor: Actor, engagement_id: uuid.UUID, event: str, **values: Any
    ) -> Engagement:
        return await self._transition(
            actor,
            engagement_id,
            event,
            is_seeker_side,
            "Only the seeker company or an admin can do this",
            **values,
        )

    async def _participant_transition(
        self, actor: Actor, engagement_id: uuid.UUID, event: str, **values: Any
    ) -> Engagement:
        return await self._transition(
            actor,
            engagement_id,
            event,
            lambda a, e: a.is_admin or is_participant(a, e),
            "Only engagement participants can do this",
            **values,
        )

    async def _transition(
        self,
        actor: Actor,
        engagement_id: uuid.UUID,
        event: str,
        permitted: Any,
        denial: str,
        **values: Any,
    ) -> Engagement:
        engagement: Engagement = await get_or_raise(self._engagements, engagement_id)
        await ensure_not_frozen(self._disputes, engagement.id)
        current = engagement.status
        new_status = fire_transition(EngagementStateMachine, "engagement", current, event)
        authorize(permitted(actor, engagement), denial)

        await self._engagements.transition(engagement, current, status=new_status, **values)
        logger.info(
            "engagement.transitioned",
            engagement_id=str(engagement.id),
            transition=event,
            from_status=current,
            to_status=new_status,
        )
        return engagement
