"""Escrow Ledger: the only code that moves money.

Coordinates:
    - Domain state machine (pending -> held -> released | refunded)
    - ProcessorGateway (timeouts, retries, audit logging)
    - Repositories (status-guarded writes)

Ordering rule for every money movement: call the processor first, write the
new status only after it confirmed success. A transient failure leaves the
record in its pre-call status, and the retry reuses the same idempotency
key, so the processor never applies the same movement twice.

Idempotency keys:
    escrow:{id}:authorize          authorize_charge
    escrow:{id}:held               capture_charge
    escrow:{id}:released           transfer of provider_amount
    escrow:{id}:refunded           refund (full or partial)
    escrow:{id}:refunded:remainder transfer of the unrefunded remainder
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from engagement_escrow.config import Settings, get_settings
from engagement_escrow.domain.clock import Clock, utc_now
from engagement_escrow.domain.enums import (
    ActorRole,
    EngagementStatus,
    EscrowStatus,
    NotificationKind,
)
from engagement_escrow.domain.exceptions import (
    ConflictError,
    InputValidationError,
)
from engagement_escrow.domain.fees import ZERO, FeeCalculator, FeeSchedule, to_money
from engagement_escrow.domain.state_machine import EscrowStateMachine
from engagement_escrow.infrastructure.database.orm_models import EscrowPayment
from engagement_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EngagementRepository,
    EscrowPaymentRepository,
    PayoutAccountRepository,
)
from engagement_escrow.infrastructure.notifications import LoggingNotifier, dispatch
from engagement_escrow.infrastructure.payments import ProcessorGateway, build_processor
from engagement_escrow.logging_config import get_logger
from engagement_escrow.services.guards import (
    authorize,
    ensure_not_frozen,
    fire_transition,
    get_or_raise,
    is_seeker_side,
    require_text,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from engagement_escrow.domain.actors import Actor
    from engagement_escrow.domain.processor_protocol import Notifier, PaymentProcessor
    from engagement_escrow.infrastructure.database.orm_models import (
        Engagement,
        PayoutAccount,
    )

logger = get_logger(__name__)


def escrow_key(payment_id: uuid.UUID, target: str) -> str:
    return f"escrow:{payment_id}:{target}"


class EscrowLedger:
    """Owns EscrowPayment records and every processor call made for them."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        processor: PaymentProcessor | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._fees = FeeCalculator(FeeSchedule.from_settings(self._settings))
        self._gateway = ProcessorGateway(
            processor or build_processor(self._settings), self._settings
        )
        self._payments = EscrowPaymentRepository(session)
        self._engagements = EngagementRepository(session)
        self._disputes = DisputeRepository(session)
        self._payout_accounts = PayoutAccountRepository(session)
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock

    @property
    def fees(self) -> FeeCalculator:
        return self._fees

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_escrow_payment(
        self,
        actor: Actor,
        engagement_id: uuid.UUID,
        payment_method: str,
        amount: Decimal | int | str | None = None,
        currency: str | None = None,
    ) -> EscrowPayment:
        """Authorize a charge for an active engagement and record it as pending."""
        engagement: Engagement = await get_or_raise(self._engagements, engagement_id)
        await ensure_not_frozen(self._disputes, engagement.id)
        if engagement.status != EngagementStatus.ACTIVE.value:
            raise ConflictError(
                f"Escrow can only be created for an active engagement, not {engagement.status}",
                code="ENGAGEMENT_NOT_ACTIVE",
            )
        authorize(
            is_seeker_side(actor, engagement),
            "Only the seeker company or an admin can fund escrow",
        )

        method = require_text(payment_method, "payment_method")
        value = engagement.total_amount if amount is None else to_money(amount)
        if value <= 0:
            raise InputValidationError("amount must be positive", field="amount")

        await self._payout_account_or_raise(engagement.provider_id)
        existing = await self._payments.get_unsettled_for_engagement(engagement.id)
        if existing is not None:
            raise ConflictError(
                f"Engagement {engagement.id} already has unsettled payment {existing.id}",
                code="ESCROW_ALREADY_OPEN",
            )

        breakdown = self._fees.breakdown(value, currency or engagement.currency)
        payment_id = uuid.uuid4()
        receipt = await self._gateway.call(
            "authorize_charge",
            breakdown.total,
            breakdown.currency,
            method,
            idempotency_key=escrow_key(payment_id, "authorize"),
            pre_status="new",
        )

        payment = EscrowPayment(
            id=payment_id,
            engagement_id=engagement.id,
            amount=breakdown.total,
            currency=breakdown.currency,
            platform_fee=breakdown.platform_fee,
            provider_amount=breakdown.provider_amount,
            refunded_amount=ZERO,
            released_amount=ZERO,
            status=EscrowStatus.PENDING.value,
            payment_method=method,
            payment_intent_id=receipt.reference,
        )
        payment = await self._payments.create(payment)

        logger.info(
            "escrow.created",
            payment_id=str(payment.id),
            engagement_id=str(engagement.id),
            amount=str(payment.amount),
            platform_fee=str(payment.platform_fee),
            provider_amount=str(payment.provider_amount),
            intent_id=receipt.reference,
        )
        return payment

    # ------------------------------------------------------------------
    # Hold
    # ------------------------------------------------------------------

    async def hold_payment(self, actor: Actor, payment_id: uuid.UUID) -> EscrowPayment:
        """Capture the authorized charge. Marked held only after a confirmed capture."""
        payment: EscrowPayment = await get_or_raise(self._payments, payment_id)
        await ensure_not_frozen(self._disputes, payment.engagement_id)
        current = payment.status
        new_status = fire_transition(
            EscrowStateMachine, "escrow payment", current, "capture_confirmed"
        )
        engagement: Engagement = await get_or_raise(self._engagements, payment.engagement_id)
        authorize(
            actor.role is ActorRole.SYSTEM or is_seeker_side(actor, engagement),
            "Only the seeker company, an admin or the system can capture escrow",
        )

        await self._gateway.call(
            "capture_charge",
            payment.payment_intent_id,
            idempotency_key=escrow_key(payment.id, "held"),
            pre_status=current,
        )
        await self._payments.transition(
            payment, current, status=new_status, held_at=self._clock()
        )

        logger.info("escrow.held", payment_id=str(payment.id), amount=str(payment.amount))
        await dispatch(
            self._notifier,
            NotificationKind.PAYMENT_HELD,
            payment_id=payment.id,
            engagement_id=payment.engagement_id,
        )
        return payment

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(
        self,
        actor: Actor,
        payment_id: uuid.UUID,
        destination: str | None = None,
    ) -> EscrowPayment:
        """Transfer provider_amount for a completed engagement; the platform fee stays."""
        payment: EscrowPayment = await get_or_raise(self._payments, payment_id)
        await ensure_not_frozen(self._disputes, payment.engagement_id)
        fire_transition(EscrowStateMachine, "escrow payment", payment.status, "release")
        engagement: Engagement = await get_or_raise(self._engagements, payment.engagement_id)
        if engagement.status != EngagementStatus.COMPLETED.value:
            raise ConflictError(
                f"Engagement {engagement.id} is {engagement.status}; release needs completed",
                code="ENGAGEMENT_NOT_COMPLETED",
            )
        authorize(
            is_seeker_side(actor, engagement),
            "Only the seeker company or an admin can release escrow",
        )
        return await self._release(payment, engagement, destination)

    async def release_for_completion(
        self, engagement: Engagement, destination: str | None = None
    ) -> EscrowPayment:
        """Release the held payment of an engagement that is being completed.

        EngagementLifecycle has already checked the dispute guard, the
        completion transition and the caller before calling this, and writes
        `completed` only after it returns.
        """
        payment = await self._payments.get_held_for_engagement(engagement.id)
        if payment is None:
            raise ConflictError(
                f"Engagement {engagement.id} has no held escrow payment to release",
                code="ESCROW_NOT_HELD",
            )
        fire_transition(EscrowStateMachine, "escrow payment", payment.status, "release")
        return await self._release(payment, engagement, destination)

    async def _release(
        self,
        payment: EscrowPayment,
        engagement: Engagement,
        destination: str | None,
    ) -> EscrowPayment:
        current = payment.status
        target = destination or (await self._payout_account_or_raise(engagement.provider_id)).destination

        receipt = await self._gateway.call(
            "transfer",
            payment.provider_amount,
            payment.currency,
            target,
            idempotency_key=escrow_key(payment.id, "released"),
            pre_status=current,
        )
        await self._payments.transition(
            payment,
            current,
            status=EscrowStatus.RELEASED,
            released_amount=payment.amount - payment.refunded_amount,
            transfer_id=receipt.reference,
            destination=target,
            released_at=self._clock(),
        )

        logger.info(
            "escrow.released",
            payment_id=str(payment.id),
            provider_amount=str(payment.provider_amount),
            platform_fee_retained=str(payment.platform_fee),
            transfer_id=receipt.reference,
        )
        await dispatch(
            self._notifier,
            NotificationKind.PAYMENT_RELEASED,
            payment_id=payment.id,
            recipient=engagement.provider_id,
            amount=payment.provider_amount,
        )
        return payment

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def refund(
        self,
        actor: Actor,
        payment_id: uuid.UUID,
        reason: str,
        amount: Decimal | int | str | None = None,
        destination: str | None = None,
    ) -> EscrowPayment:
        """Refund a held payment to the seeker.

        Without `amount` the whole charge is refunded. A partial amount
        refunds that much and releases the remainder, less the platform fee
        on it, to the provider as a separate transfer.
        """
        authorize(actor.is_admin, "Only an admin can refund escrow")
        payment: EscrowPayment = await get_or_raise(self._payments, payment_id)
        await ensure_not_frozen(self._disputes, payment.engagement_id)
        fire_transition(EscrowStateMachine, "escrow payment", payment.status, "refund")
        value = None if amount is None else to_money(amount, "refund_amount")
        return await self._refund(payment, require_text(reason, "reason"), value, destination)

    async def settle_dispute(
        self,
        payment: EscrowPayment,
        refund_amount: Decimal,
        reason: str,
        destination: str | None = None,
    ) -> EscrowPayment:
        """Refund on behalf of a dispute resolution. The dispute itself is the freeze."""
        fire_transition(EscrowStateMachine, "escrow payment", payment.status, "refund")
        amount = to_money(refund_amount, "refund_amount")
        return await self._refund(payment, reason, amount, destination)

    async def _refund(
        self,
        payment: EscrowPayment,
        reason: str,
        amount: Decimal | None,
        destination: str | None,
    ) -> EscrowPayment:
        current = payment.status
        if amount is None or amount == payment.amount:
            return await self._refund_full(payment, current, reason)

        if amount <= 0 or amount > payment.amount:
            raise InputValidationError(
                f"Refund amount must be greater than 0 and at most {payment.amount}",
                field="refund_amount",
            )

        remainder = payment.amount - amount
        remainder_fee = self._fees.platform_fee(remainder)
        remainder_payout = remainder - remainder_fee
        if destination is None:
            engagement: Engagement = await get_or_raise(self._engagements, payment.engagement_id)
            destination = (await self._payout_account_or_raise(engagement.provider_id)).destination

        refund_receipt = await self._gateway.call(
            "refund",
            payment.payment_intent_id,
            amount,
            idempotency_key=escrow_key(payment.id, "refunded"),
            pre_status=current,
        )
        transfer_id = None
        if remainder_payout > 0:
            transfer_receipt = await self._gateway.call(
                "transfer",
                remainder_payout,
                payment.currency,
                destination,
                idempotency_key=escrow_key(payment.id, "refunded:remainder"),
                pre_status=current,
            )
            transfer_id = transfer_receipt.reference

        now = self._clock()
        await self._payments.transition(
            payment,
            current,
            status=EscrowStatus.REFUNDED,
            refunded_amount=amount,
            platform_fee=remainder_fee,
            provider_amount=remainder_payout,
            released_amount=remainder,
            refund_id=refund_receipt.reference,
            transfer_id=transfer_id,
            destination=destination,
            refund_reason=reason,
            refunded_at=now,
            released_at=now,
        )

        logger.info(
            "escrow.partially_refunded",
            payment_id=str(payment.id),
            refunded=str(amount),
            remainder=str(remainder),
            remainder_fee=str(remainder_fee),
            remainder_payout=str(remainder_payout),
        )
        await dispatch(
            self._notifier,
            NotificationKind.PAYMENT_REFUNDED,
            payment_id=payment.id,
            amount=amount,
        )
        return payment

    async def _refund_full(
        self, payment: EscrowPayment, current: str, reason: str
    ) -> EscrowPayment:
        receipt = await self._gateway.call(
            "refund",
            payment.payment_intent_id,
            None,
            idempotency_key=escrow_key(payment.id, "refunded"),
            pre_status=current,
        )
        await self._payments.transition(
            payment,
            current,
            status=EscrowStatus.REFUNDED,
            refunded_amount=payment.amount,
            platform_fee=ZERO,
            provider_amount=ZERO,
            released_amount=ZERO,
            refund_id=receipt.reference,
            refund_reason=reason,
            refunded_at=self._clock(),
        )

        logger.info("escrow.refunded", payment_id=str(payment.id), amount=str(payment.amount))
        await dispatch(
            self._notifier,
            NotificationKind.PAYMENT_REFUNDED,
            payment_id=payment.id,
            amount=payment.amount,
        )
        return payment

    # ------------------------------------------------------------------
    # Payout accounts
    # ------------------------------------------------------------------

    async def register_payout_account(
        self,
        actor: Actor,
        provider_id: str,
        destination: str,
        payouts_enabled: bool = True,
    ) -> PayoutAccount:
        authorize(
            actor.is_admin or actor.is_provider(provider_id),
            "Only the provider or an admin can register a payout account",
        )
        account = await self._payout_accounts.upsert(
            provider_id=require_text(provider_id, "provider_id"),
            destination=require_text(destination, "destination"),
            payouts_enabled=payouts_enabled,
        )
        logger.info(
            "payout_account.registered",
            provider_id=provider_id,
            payouts_enabled=payouts_enabled,
        )
        return account

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: uuid.UUID) -> EscrowPayment:
        return await get_or_raise(self._payments, payment_id)

    async def get_held_for_engagement(self, engagement_id: uuid.UUID) -> EscrowPayment | None:
        return await self._payments.get_held_for_engagement(engagement_id)

    async def _payout_account_or_raise(self, provider_id: str) -> PayoutAccount:
        account = await self._payout_accounts.get_by_provider(provider_id)
        if account is None or not account.payouts_enabled:
            raise ConflictError(
                f"Provider {provider_id} has no payout account with payouts enabled",
                code="PAYOUT_ACCOUNT_UNAVAILABLE",
            )
        return account
