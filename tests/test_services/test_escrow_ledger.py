"""Tests for EscrowLedger: authorize, hold, release, refund and processor failures."""

from __future__ import annotations

from decimal import Decimal

import pytest

from engagement_escrow.domain.enums import DisputeReason, EngagementStatus, EscrowStatus
from engagement_escrow.domain.exceptions import (
    ConflictError,
    DisputeOpenError,
    ForbiddenError,
    InputValidationError,
    InvalidStateTransitionError,
    ProcessorPermanentError,
    ProcessorTransientError,
)

PROVIDER_ID = "provider-ada"


def assert_balanced(payment) -> None:
    assert payment.amount == payment.refunded_amount + payment.platform_fee + payment.provider_amount


class TestCreateEscrowPayment:
    @pytest.mark.asyncio
    async def test_authorizes_and_records_pending(
        self, ledger, processor, active_engagement, seeker
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")

        assert payment.status == EscrowStatus.PENDING
        assert payment.amount == Decimal("12000.00")
        assert payment.platform_fee == Decimal("1800.00")
        assert payment.provider_amount == Decimal("10200.00")
        assert payment.payment_intent_id in processor.intents
        assert processor.calls == [("authorize_charge", f"escrow:{payment.id}:authorize")]
        assert_balanced(payment)

    @pytest.mark.asyncio
    async def test_custom_amount(self, ledger, active_engagement, seeker) -> None:
        payment = await ledger.create_escrow_payment(
            seeker, active_engagement.id, "pm_card_visa", amount="1000"
        )
        assert payment.platform_fee == Decimal("150.00")
        assert payment.provider_amount == Decimal("850.00")

    @pytest.mark.asyncio
    async def test_engagement_must_be_active(self, ledger, staged_engagement, seeker) -> None:
        with pytest.raises(ConflictError, match="active engagement"):
            await ledger.create_escrow_payment(seeker, staged_engagement.id, "pm_card_visa")

    @pytest.mark.asyncio
    async def test_requires_payout_account(
        self, ledger, lifecycle, processor, staged_engagement, seeker
    ) -> None:
        await lifecycle.schedule_interview(seeker, staged_engagement.id)
        await lifecycle.accept(seeker, staged_engagement.id)
        await lifecycle.activate(seeker, staged_engagement.id)

        with pytest.raises(ConflictError) as exc_info:
            await ledger.create_escrow_payment(seeker, staged_engagement.id, "pm_card_visa")
        assert exc_info.value.code == "PAYOUT_ACCOUNT_UNAVAILABLE"
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_disabled_payout_account_is_rejected(
        self, ledger, active_engagement, seeker, admin
    ) -> None:
        await ledger.register_payout_account(
            admin, PROVIDER_ID, "acct_ada_payouts", payouts_enabled=False
        )
        with pytest.raises(ConflictError):
            await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")

    @pytest.mark.asyncio
    async def test_one_unsettled_payment_per_engagement(
        self, ledger, active_engagement, seeker
    ) -> None:
        await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        with pytest.raises(ConflictError, match="unsettled"):
            await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")

    @pytest.mark.asyncio
    async def test_provider_cannot_fund(self, ledger, active_engagement, provider) -> None:
        with pytest.raises(ForbiddenError):
            await ledger.create_escrow_payment(provider, active_engagement.id, "pm_card_visa")

    @pytest.mark.asyncio
    async def test_payment_method_required(self, ledger, active_engagement, seeker) -> None:
        with pytest.raises(InputValidationError):
            await ledger.create_escrow_payment(seeker, active_engagement.id, "  ")


class TestHoldPayment:
    @pytest.mark.asyncio
    async def test_capture_marks_held(
        self, ledger, processor, active_engagement, seeker, notifier, clock
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        payment = await ledger.hold_payment(seeker, payment.id)

        assert payment.status == EscrowStatus.HELD
        assert payment.held_at == clock.now
        assert processor.intents[payment.payment_intent_id].captured
        assert processor.calls[-1] == ("capture_charge", f"escrow:{payment.id}:held")
        assert notifier.kinds()[-1] == "payment_held"

    @pytest.mark.asyncio
    async def test_system_can_capture(self, ledger, active_engagement, seeker, system) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        payment = await ledger.hold_payment(system, payment.id)
        assert payment.status == EscrowStatus.HELD

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, ledger, processor, active_engagement, seeker
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        processor.fail_next("capture_charge", times=2)

        payment = await ledger.hold_payment(seeker, payment.id)

        key = f"escrow:{payment.id}:held"
        assert payment.status == EscrowStatus.HELD
        assert processor.calls.count(("capture_charge", key)) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_leave_payment_pending(
        self, ledger, processor, active_engagement, seeker
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        processor.fail_next("capture_charge", times=3)

        with pytest.raises(ProcessorTransientError) as exc_info:
            await ledger.hold_payment(seeker, payment.id)

        assert exc_info.value.retryable
        assert payment.status == EscrowStatus.PENDING

        retried = await ledger.hold_payment(seeker, payment.id)
        assert retried.status == EscrowStatus.HELD

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(
        self, ledger, processor, active_engagement, seeker
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        processor.fail_next("capture_charge", kind="permanent")

        with pytest.raises(ProcessorPermanentError) as exc_info:
            await ledger.hold_payment(seeker, payment.id)

        assert not exc_info.value.retryable
        assert [op for op, _ in processor.calls].count("capture_charge") == 1
        assert payment.status == EscrowStatus.PENDING

    @pytest.mark.asyncio
    async def test_timeout_counts_as_transient(
        self, ledger, processor, active_engagement, seeker
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        processor.set_latency("capture_charge", 5.0)

        with pytest.raises(ProcessorTransientError, match="timed out"):
            await ledger.hold_payment(seeker, payment.id)
        assert payment.status == EscrowStatus.PENDING

    @pytest.mark.asyncio
    async def test_held_payment_cannot_be_held_again(self, ledger, held_payment, seeker) -> None:
        with pytest.raises(InvalidStateTransitionError):
            await ledger.hold_payment(seeker, held_payment.id)


class TestRelease:
    @pytest.mark.asyncio
    async def test_pending_payment_cannot_be_released(
        self, ledger, active_engagement, seeker
    ) -> None:
        payment = await ledger.create_escrow_payment(seeker, active_engagement.id, "pm_card_visa")
        with pytest.raises(ConflictError):
            await ledger.release(seeker, payment.id)

    @pytest.mark.asyncio
    async def test_engagement_must_be_completed(self, ledger, held_payment, seeker) -> None:
        with pytest.raises(ConflictError, match="release needs completed"):
            await ledger.release(seeker, held_payment.id)

    @pytest.mark.asyncio
    async def test_release_transfers_provider_amount_once(
        self, ledger, lifecycle, processor, in_progress_engagement, held_payment, seeker, clock
    ) -> None:
        await lifecycle.complete(
            seeker, in_progress_engagement.id, deliverables=["report"], release_payment=False
        )

        payment = await ledger.release(seeker, held_payment.id, destination="acct_override")

        assert payment.status == EscrowStatus.RELEASED
        assert payment.released_at == clock.now
        assert payment.released_amount == Decimal("12000.00")
        assert payment.destination == "acct_override"
        assert processor.transfers[0]["amount"] == Decimal("10200.00")
        assert processor.transfers[0]["idempotency_key"] == f"escrow:{payment.id}:released"
        assert_balanced(payment)

        with pytest.raises(ConflictError):
            await ledger.release(seeker, held_payment.id)
        assert len(processor.transfers) == 1

    @pytest.mark.asyncio
    async def test_failed_transfer_keeps_payment_held(
        self, ledger, lifecycle, processor, in_progress_engagement, held_payment, seeker
    ) -> None:
        await lifecycle.complete(
            seeker, in_progress_engagement.id, deliverables=["report"], release_payment=False
        )
        processor.fail_next("transfer", times=3)

        with pytest.raises(ProcessorTransientError):
            await ledger.release(seeker, held_payment.id)
        assert held_payment.status == EscrowStatus.HELD
        assert processor.transfers == []

        payment = await ledger.release(seeker, held_payment.id)
        assert payment.status == EscrowStatus.RELEASED
        assert len(processor.transfers) == 1

    @pytest.mark.asyncio
    async def test_refund_after_release_conflicts(
        self, ledger, lifecycle, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        await lifecycle.complete(seeker, in_progress_engagement.id, deliverables=["report"])

        with pytest.raises(ConflictError):
            await ledger.refund(admin, held_payment.id, reason="Changed our mind")


class TestRefund:
    @pytest.mark.asyncio
    async def test_full_refund(self, ledger, processor, held_payment, admin, notifier) -> None:
        payment = await ledger.refund(admin, held_payment.id, reason="Provider no-show")

        assert payment.status == EscrowStatus.REFUNDED
        assert payment.refunded_amount == Decimal("12000.00")
        assert payment.platform_fee == 0
        assert payment.provider_amount == 0
        assert payment.refund_reason == "Provider no-show"
        assert processor.refunds[0]["amount"] == Decimal("12000.00")
        assert processor.transfers == []
        assert notifier.kinds()[-1] == "payment_refunded"
        assert_balanced(payment)

    @pytest.mark.asyncio
    async def test_partial_refund_releases_remainder(
        self, ledger, processor, held_payment, admin
    ) -> None:
        payment = await ledger.refund(admin, held_payment.id, reason="Half delivered", amount="2000")

        assert payment.status == EscrowStatus.REFUNDED
        assert payment.refunded_amount == Decimal("2000")
        assert payment.released_amount == Decimal("10000.00")
        assert payment.platform_fee == Decimal("1500.00")
        assert payment.provider_amount == Decimal("8500.00")
        assert_balanced(payment)

        assert len(processor.refunds) == 1
        assert len(processor.transfers) == 1
        assert processor.transfers[0]["amount"] == Decimal("8500.00")
        assert processor.transfers[0]["idempotency_key"] == (
            f"escrow:{payment.id}:refunded:remainder"
        )

    @pytest.mark.asyncio
    async def test_refund_above_amount_rejected(self, ledger, processor, held_payment, admin) -> None:
        with pytest.raises(InputValidationError):
            await ledger.refund(admin, held_payment.id, reason="Too much", amount="12000.01")
        assert processor.refunds == []

    @pytest.mark.asyncio
    async def test_sub_cent_refund_rejected(self, ledger, processor, held_payment, admin) -> None:
        with pytest.raises(InputValidationError, match="two decimal places"):
            await ledger.refund(admin, held_payment.id, reason="Odd amount", amount="100.005")
        assert processor.refunds == []
        assert processor.transfers == []
        assert held_payment.status == EscrowStatus.HELD

    @pytest.mark.asyncio
    async def test_only_admin_refunds(self, ledger, held_payment, seeker) -> None:
        with pytest.raises(ForbiddenError):
            await ledger.refund(seeker, held_payment.id, reason="Please")

    @pytest.mark.asyncio
    async def test_refund_blocked_while_disputed(
        self, ledger, resolver, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        await resolver.file(seeker, in_progress_engagement.id, DisputeReason.QUALITY, "Buggy code")

        with pytest.raises(DisputeOpenError):
            await ledger.refund(admin, held_payment.id, reason="Dispute shortcut")

    @pytest.mark.asyncio
    async def test_cancelled_engagement_can_be_refunded(
        self, ledger, lifecycle, active_engagement, held_payment, seeker, admin
    ) -> None:
        engagement = await lifecycle.cancel(seeker, active_engagement.id)
        assert engagement.status == EngagementStatus.CANCELLED

        payment = await ledger.refund(admin, held_payment.id, reason="Cancelled")
        assert payment.status == EscrowStatus.REFUNDED


class TestPayoutAccounts:
    @pytest.mark.asyncio
    async def test_upsert_updates_destination(self, ledger, provider) -> None:
        await ledger.register_payout_account(provider, PROVIDER_ID, "acct_old")
        account = await ledger.register_payout_account(provider, PROVIDER_ID, "acct_new")
        assert account.destination == "acct_new"
        assert account.payouts_enabled

    @pytest.mark.asyncio
    async def test_other_provider_cannot_register(self, ledger, other_provider) -> None:
        with pytest.raises(ForbiddenError):
            await ledger.register_payout_account(other_provider, PROVIDER_ID, "acct_evil")
