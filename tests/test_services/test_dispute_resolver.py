"""Tests for DisputeResolver: filing, freezing, review and settlement."""

from __future__ import annotations

from decimal import Decimal

import pytest

from engagement_escrow.domain.enums import (
    DisputeOutcome,
    DisputeReason,
    DisputeStatus,
    EngagementStatus,
    EscrowStatus,
)
from engagement_escrow.domain.exceptions import (
    ConflictError,
    DisputeOpenError,
    ForbiddenError,
    InputValidationError,
    InvalidStateTransitionError,
    ProcessorPermanentError,
)


class TestFileDispute:
    @pytest.mark.asyncio
    async def test_filing_freezes_engagement(
        self, resolver, in_progress_engagement, held_payment, seeker, notifier
    ) -> None:
        dispute = await resolver.file(
            seeker, in_progress_engagement.id, DisputeReason.QUALITY, "Tests are failing"
        )

        assert dispute.status == DisputeStatus.OPEN
        assert dispute.filed_by_type == "seeker"
        assert dispute.escrow_payment_id == held_payment.id
        assert in_progress_engagement.status == EngagementStatus.DISPUTED
        assert in_progress_engagement.pre_dispute_status == "in_progress"
        assert notifier.kinds()[-1] == "dispute_created"
        assert notifier.sent[-1][1]["recipient"] == "provider-ada"

    @pytest.mark.asyncio
    async def test_provider_can_file(self, resolver, in_progress_engagement, provider) -> None:
        dispute = await resolver.file(
            provider, in_progress_engagement.id, "payment", "Invoice ignored"
        )
        assert dispute.filed_by_type == "provider"
        assert dispute.reason == "payment"

    @pytest.mark.asyncio
    async def test_outsiders_cannot_file(
        self, resolver, in_progress_engagement, other_seeker, other_provider
    ) -> None:
        for actor in (other_seeker, other_provider):
            with pytest.raises(ForbiddenError):
                await resolver.file(actor, in_progress_engagement.id, "quality", "Not mine")

    @pytest.mark.asyncio
    async def test_unknown_reason_rejected(self, resolver, in_progress_engagement, seeker) -> None:
        with pytest.raises(InputValidationError):
            await resolver.file(seeker, in_progress_engagement.id, "vibes", "Bad vibes")

    @pytest.mark.asyncio
    async def test_second_dispute_conflicts(
        self, resolver, in_progress_engagement, seeker, provider
    ) -> None:
        await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        with pytest.raises(ConflictError) as exc_info:
            await resolver.file(provider, in_progress_engagement.id, "payment", "Unpaid")
        assert exc_info.value.code == "DUPLICATE_DISPUTE"

    @pytest.mark.asyncio
    async def test_released_engagement_cannot_be_disputed(
        self, resolver, lifecycle, in_progress_engagement, seeker
    ) -> None:
        await lifecycle.complete(seeker, in_progress_engagement.id, deliverables=["report"])
        with pytest.raises(InvalidStateTransitionError):
            await resolver.file(seeker, in_progress_engagement.id, "quality", "Too late")

    @pytest.mark.asyncio
    async def test_completed_engagement_with_held_escrow_can_be_disputed(
        self, resolver, lifecycle, ledger, in_progress_engagement, held_payment, seeker, provider
    ) -> None:
        await lifecycle.complete(
            seeker, in_progress_engagement.id, deliverables=["report"], release_payment=False
        )

        dispute = await resolver.file(
            provider, in_progress_engagement.id, "payment", "Release never happened"
        )

        assert dispute.status == DisputeStatus.OPEN
        assert dispute.escrow_payment_id == held_payment.id
        assert in_progress_engagement.status == EngagementStatus.COMPLETED
        assert in_progress_engagement.pre_dispute_status is None
        with pytest.raises(DisputeOpenError):
            await ledger.release(seeker, held_payment.id)
        assert held_payment.status == EscrowStatus.HELD

    @pytest.mark.asyncio
    async def test_open_dispute_is_visible(self, resolver, in_progress_engagement, seeker) -> None:
        assert await resolver.get_open_dispute(in_progress_engagement.id) is None
        dispute = await resolver.file(seeker, in_progress_engagement.id, "timeline", "Late")
        assert (await resolver.get_open_dispute(in_progress_engagement.id)).id == dispute.id


class TestReview:
    @pytest.mark.asyncio
    async def test_admin_moves_to_review(
        self, resolver, in_progress_engagement, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        dispute = await resolver.begin_review(admin, dispute.id)
        assert dispute.status == DisputeStatus.UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_parties_cannot_review(
        self, resolver, in_progress_engagement, seeker, provider
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        for actor in (seeker, provider):
            with pytest.raises(ForbiddenError):
                await resolver.begin_review(actor, dispute.id)

    @pytest.mark.asyncio
    async def test_engagement_frozen_under_review(
        self, resolver, lifecycle, in_progress_engagement, seeker, provider, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        await resolver.begin_review(admin, dispute.id)
        with pytest.raises(DisputeOpenError):
            await lifecycle.pause(provider, in_progress_engagement.id)


class TestResolve:
    @pytest.mark.asyncio
    async def test_restore_without_refund(
        self, resolver, ledger, in_progress_engagement, held_payment, seeker, admin, notifier
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "communication", "Silent")
        dispute = await resolver.resolve(admin, dispute.id, "Talked it through")

        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.engagement_outcome == "restore"
        assert dispute.resolved_by == "admin-root"
        assert in_progress_engagement.status == EngagementStatus.IN_PROGRESS
        assert in_progress_engagement.pre_dispute_status is None
        assert held_payment.status == EscrowStatus.HELD
        assert notifier.kinds()[-1] == "dispute_resolved"
        assert await resolver.get_open_dispute(in_progress_engagement.id) is None

    @pytest.mark.asyncio
    async def test_partial_refund_and_terminate(
        self, resolver, processor, in_progress_engagement, held_payment, seeker, admin, clock
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Half done")
        await resolver.begin_review(admin, dispute.id)

        dispute = await resolver.resolve(
            admin,
            dispute.id,
            "Refund a quarter",
            refund_amount="3000",
            engagement_outcome=DisputeOutcome.TERMINATE,
        )

        assert dispute.refund_amount == Decimal("3000")
        assert held_payment.status == EscrowStatus.REFUNDED
        assert held_payment.refunded_amount == Decimal("3000")
        assert held_payment.platform_fee == Decimal("1350.00")
        assert held_payment.provider_amount == Decimal("7650.00")
        assert held_payment.amount == (
            held_payment.refunded_amount + held_payment.platform_fee + held_payment.provider_amount
        )
        assert processor.transfers[0]["amount"] == Decimal("7650.00")
        assert in_progress_engagement.status == EngagementStatus.TERMINATED
        assert in_progress_engagement.terminated_at == clock.now

    @pytest.mark.asyncio
    async def test_full_refund_and_cancel(
        self, resolver, processor, in_progress_engagement, held_payment, provider, admin
    ) -> None:
        dispute = await resolver.file(provider, in_progress_engagement.id, "other", "Scope creep")
        await resolver.resolve(
            admin,
            dispute.id,
            "Unwind",
            refund_amount="12000",
            engagement_outcome="cancel",
        )

        assert held_payment.status == EscrowStatus.REFUNDED
        assert held_payment.refunded_amount == Decimal("12000.00")
        assert held_payment.platform_fee == 0
        assert processor.transfers == []
        assert in_progress_engagement.status == EngagementStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_refund_above_held_rejected(
        self, resolver, processor, in_progress_engagement, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        with pytest.raises(InputValidationError):
            await resolver.resolve(admin, dispute.id, "Too much", refund_amount="15000")
        assert processor.refunds == []
        assert dispute.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_refund_needs_held_payment(
        self, resolver, active_engagement, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, active_engagement.id, "quality", "Nothing funded")
        with pytest.raises(ConflictError) as exc_info:
            await resolver.resolve(admin, dispute.id, "Refund", refund_amount="100")
        assert exc_info.value.code == "ESCROW_NOT_HELD"

    @pytest.mark.asyncio
    async def test_only_admin_resolves(
        self, resolver, in_progress_engagement, seeker, provider
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        with pytest.raises(ForbiddenError):
            await resolver.resolve(provider, dispute.id, "I win")

    @pytest.mark.asyncio
    async def test_processor_failure_keeps_dispute_open(
        self, resolver, processor, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        processor.fail_next("refund", kind="permanent")

        with pytest.raises(ProcessorPermanentError):
            await resolver.resolve(admin, dispute.id, "Refund", refund_amount="12000")

        assert dispute.status == DisputeStatus.OPEN
        assert held_payment.status == EscrowStatus.HELD
        assert in_progress_engagement.status == EngagementStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_resolved_dispute_cannot_resolve_again(
        self, resolver, in_progress_engagement, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        await resolver.resolve(admin, dispute.id, "Fine")
        with pytest.raises(InvalidStateTransitionError):
            await resolver.resolve(admin, dispute.id, "Again")

    @pytest.mark.asyncio
    async def test_sub_cent_refund_rejected(
        self, resolver, processor, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")

        with pytest.raises(InputValidationError, match="two decimal places"):
            await resolver.resolve(admin, dispute.id, "Refund", refund_amount="100.005")

        assert processor.refunds == []
        assert processor.transfers == []
        assert held_payment.status == EscrowStatus.HELD
        assert dispute.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_resolving_after_completion_keeps_engagement_completed(
        self, resolver, lifecycle, processor, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        await lifecycle.complete(
            seeker, in_progress_engagement.id, deliverables=["report"], release_payment=False
        )
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Half done")

        dispute = await resolver.resolve(
            admin,
            dispute.id,
            "Refund a quarter",
            refund_amount="3000",
            engagement_outcome=DisputeOutcome.TERMINATE,
        )

        assert dispute.status == DisputeStatus.RESOLVED
        assert held_payment.status == EscrowStatus.REFUNDED
        assert processor.transfers[0]["amount"] == Decimal("7650.00")
        assert in_progress_engagement.status == EngagementStatus.COMPLETED
        assert in_progress_engagement.terminated_at is None


class TestClose:
    @pytest.mark.asyncio
    async def test_close_unresolved_restores_engagement(
        self, resolver, in_progress_engagement, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        dispute = await resolver.close(admin, dispute.id, notes="Withdrawn by filer")

        assert dispute.status == DisputeStatus.CLOSED
        assert dispute.resolution == "Withdrawn by filer"
        assert in_progress_engagement.status == EngagementStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_close_after_resolve_keeps_outcome(
        self, resolver, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        await resolver.resolve(
            admin, dispute.id, "Stop", refund_amount="12000", engagement_outcome="terminate"
        )
        await resolver.close(admin, dispute.id)
        assert in_progress_engagement.status == EngagementStatus.TERMINATED

    @pytest.mark.asyncio
    async def test_new_dispute_after_close(
        self, resolver, in_progress_engagement, seeker, provider, admin
    ) -> None:
        first = await resolver.file(seeker, in_progress_engagement.id, "quality", "Buggy")
        await resolver.close(admin, first.id)

        second = await resolver.file(provider, in_progress_engagement.id, "payment", "Late pay")
        assert second.id != first.id
        assert second.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_closing_escrow_dispute_unblocks_release(
        self, resolver, lifecycle, ledger, in_progress_engagement, held_payment, seeker, admin
    ) -> None:
        await lifecycle.complete(
            seeker, in_progress_engagement.id, deliverables=["report"], release_payment=False
        )
        dispute = await resolver.file(seeker, in_progress_engagement.id, "quality", "Unsure")
        await resolver.close(admin, dispute.id, notes="Withdrawn")

        assert in_progress_engagement.status == EngagementStatus.COMPLETED
        payment = await ledger.release(seeker, held_payment.id)
        assert payment.status == EscrowStatus.RELEASED
