"""Tests for OfferNegotiation: creation, counters, expiry and acceptance."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from engagement_escrow.domain.enums import OfferAction, OfferStatus
from engagement_escrow.domain.exceptions import (
    ConflictError,
    EntityNotFoundError,
    ForbiddenError,
    InputValidationError,
    InvalidStateTransitionError,
    OfferExpiredError,
)
from engagement_escrow.services import OfferNegotiation

PROVIDER_ID = "provider-ada"


class StaticCandidates:
    def __init__(self, provider_ids: list[str]) -> None:
        self.provider_ids = provider_ids

    async def ranked_candidates(self, request_id: str) -> list[str]:
        return self.provider_ids


async def make_offer(negotiation, seeker, request, provider_id=PROVIDER_ID, rate="100"):
    return await negotiation.create_offer(
        seeker,
        request_id=request.id,
        provider_id=provider_id,
        rate=rate,
        duration_hours="120",
    )


class TestCreateOffer:
    @pytest.mark.asyncio
    async def test_computes_totals_and_waits_on_provider(
        self, negotiation, seeker, engagement_request, notifier
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)

        assert offer.status == OfferStatus.PENDING
        assert offer.awaiting_party == "provider"
        assert offer.total_amount == Decimal("12000.00")
        assert offer.platform_fee == Decimal("1800.00")
        assert offer.provider_amount == Decimal("10200.00")
        assert offer.seeker_company_id == engagement_request.seeker_company_id
        assert notifier.kinds() == ["offer_received"]

    @pytest.mark.asyncio
    async def test_only_seekers_create_offers(self, negotiation, provider, engagement_request) -> None:
        with pytest.raises(ForbiddenError):
            await make_offer(negotiation, provider, engagement_request)

    @pytest.mark.asyncio
    async def test_other_company_cannot_offer_on_request(
        self, negotiation, other_seeker, engagement_request
    ) -> None:
        with pytest.raises(ForbiddenError):
            await make_offer(negotiation, other_seeker, engagement_request)

    @pytest.mark.asyncio
    async def test_unknown_request(self, negotiation, seeker) -> None:
        with pytest.raises(EntityNotFoundError):
            await negotiation.create_offer(
                seeker,
                request_id=uuid.uuid4(),
                provider_id=PROVIDER_ID,
                rate="100",
                duration_hours="120",
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate", ["0", "-5"])
    async def test_rate_must_be_positive(
        self, negotiation, seeker, engagement_request, rate: str
    ) -> None:
        with pytest.raises(InputValidationError):
            await make_offer(negotiation, seeker, engagement_request, rate=rate)

    @pytest.mark.asyncio
    async def test_second_open_offer_for_pair_conflicts(
        self, negotiation, seeker, engagement_request
    ) -> None:
        await make_offer(negotiation, seeker, engagement_request)
        with pytest.raises(ConflictError):
            await make_offer(negotiation, seeker, engagement_request, rate="90")

    @pytest.mark.asyncio
    async def test_new_offer_allowed_after_decline(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        first = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, first.id, OfferAction.DECLINE)

        second = await make_offer(negotiation, seeker, engagement_request, rate="110")
        assert second.id != first.id
        assert second.status == OfferStatus.PENDING

    @pytest.mark.asyncio
    async def test_provider_must_be_a_ranked_candidate(
        self, session, settings, seeker, engagement_request
    ) -> None:
        negotiation = OfferNegotiation(
            session, settings, candidates=StaticCandidates(["provider-grace"])
        )
        with pytest.raises(InputValidationError, match="not a candidate"):
            await make_offer(negotiation, seeker, engagement_request)


class TestCounterOffers:
    @pytest.mark.asyncio
    async def test_counter_hands_turn_to_other_side(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)

        result = await negotiation.respond(
            provider, offer.id, OfferAction.COUNTER, counter_rate="120", message="Senior rate"
        )

        assert result.offer.status == OfferStatus.COUNTERED
        assert result.offer.counter_rate == Decimal("120.00")
        assert result.offer.awaiting_party == "seeker"
        assert result.handoff is None

    @pytest.mark.asyncio
    async def test_countering_side_cannot_answer_itself(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.COUNTER, counter_rate="120")

        with pytest.raises(ForbiddenError):
            await negotiation.respond(provider, offer.id, OfferAction.ACCEPT)

    @pytest.mark.asyncio
    async def test_accepting_a_counter_uses_countered_rate(
        self, negotiation, seeker, provider, engagement_request, notifier
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.COUNTER, counter_rate="120")

        result = await negotiation.respond(seeker, offer.id, OfferAction.ACCEPT)

        assert result.offer.status == OfferStatus.ACCEPTED
        assert result.handoff is not None
        assert result.handoff.rate == Decimal("120.00")
        assert result.handoff.total_amount == Decimal("14400.00")
        assert result.handoff.platform_fee == Decimal("2160.00")
        assert result.handoff.provider_amount == Decimal("12240.00")
        assert notifier.kinds()[-1] == "offer_accepted"

    @pytest.mark.asyncio
    async def test_counter_requires_rate(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        with pytest.raises(InputValidationError, match="counter_rate"):
            await negotiation.respond(provider, offer.id, OfferAction.COUNTER)

    @pytest.mark.asyncio
    async def test_counter_expires_after_window(
        self, negotiation, seeker, provider, engagement_request, clock
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.COUNTER, counter_rate="120")

        clock.advance(hours=49)

        with pytest.raises(OfferExpiredError):
            await negotiation.respond(seeker, offer.id, OfferAction.ACCEPT)

        fetched = await negotiation.get_offer(offer.id)
        assert fetched.status == OfferStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_reading_a_lapsed_counter_still_answers_expired(
        self, negotiation, seeker, provider, engagement_request, clock
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.COUNTER, counter_rate="120")
        clock.advance(hours=49)

        fetched = await negotiation.get_offer(offer.id)
        assert fetched.status == OfferStatus.EXPIRED

        with pytest.raises(OfferExpiredError):
            await negotiation.respond(seeker, offer.id, OfferAction.ACCEPT)
        with pytest.raises(OfferExpiredError):
            await negotiation.respond(seeker, offer.id, OfferAction.DECLINE)

    @pytest.mark.asyncio
    async def test_counter_still_open_inside_window(
        self, negotiation, seeker, provider, engagement_request, clock
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.COUNTER, counter_rate="120")

        clock.advance(hours=47)

        result = await negotiation.respond(seeker, offer.id, OfferAction.ACCEPT)
        assert result.offer.status == OfferStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_expired_counter_frees_the_pair(
        self, negotiation, seeker, provider, engagement_request, clock
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.COUNTER, counter_rate="120")
        clock.advance(hours=49)

        fresh = await make_offer(negotiation, seeker, engagement_request, rate="105")

        assert fresh.status == OfferStatus.PENDING
        assert offer.status == OfferStatus.EXPIRED


class TestAcceptAndDecline:
    @pytest.mark.asyncio
    async def test_accept_declines_sibling_offers(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        chosen = await make_offer(negotiation, seeker, engagement_request)
        sibling = await make_offer(negotiation, seeker, engagement_request, provider_id="provider-grace")

        await negotiation.respond(provider, chosen.id, OfferAction.ACCEPT)

        fetched = await negotiation.get_offer(sibling.id)
        assert fetched.status == OfferStatus.DECLINED

    @pytest.mark.asyncio
    async def test_handoff_carries_engagement_terms(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        result = await negotiation.respond(provider, offer.id, OfferAction.ACCEPT)

        handoff = result.handoff
        assert handoff.offer_id == offer.id
        assert handoff.provider_id == PROVIDER_ID
        assert handoff.seeker_company_id == "acme-corp"
        assert handoff.duration_hours == Decimal("120")
        assert handoff.total_amount == Decimal("12000.00")

    @pytest.mark.asyncio
    async def test_answered_offer_cannot_be_answered_again(
        self, negotiation, seeker, provider, engagement_request
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        await negotiation.respond(provider, offer.id, OfferAction.DECLINE)

        with pytest.raises(InvalidStateTransitionError):
            await negotiation.respond(provider, offer.id, OfferAction.ACCEPT)

    @pytest.mark.asyncio
    async def test_only_awaited_provider_can_respond(
        self, negotiation, seeker, other_provider, engagement_request
    ) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        with pytest.raises(ForbiddenError):
            await negotiation.respond(other_provider, offer.id, OfferAction.ACCEPT)

    @pytest.mark.asyncio
    async def test_unknown_action(self, negotiation, seeker, provider, engagement_request) -> None:
        offer = await make_offer(negotiation, seeker, engagement_request)
        with pytest.raises(InputValidationError):
            await negotiation.respond(provider, offer.id, "shrug")

    @pytest.mark.asyncio
    async def test_list_offers_by_request(
        self, negotiation, seeker, engagement_request
    ) -> None:
        await make_offer(negotiation, seeker, engagement_request)
        await make_offer(negotiation, seeker, engagement_request, provider_id="provider-grace")

        offers = await negotiation.list_offers(request_id=engagement_request.id)
        assert {o.provider_id for o in offers} == {PROVIDER_ID, "provider-grace"}
