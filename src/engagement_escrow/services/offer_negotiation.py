"""Offer negotiation between a seeker company and a provider.

An offer starts pending and waits for the provider. Either side may counter,
which hands the turn to the other side and starts a fresh expiry window.
A counter left unanswered past the window is expired lazily: the next
response attempt fails with OfferExpiredError, and the next read persists
the expired status. Accepting returns the EngagementHandoff used to create
the engagement.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from engagement_escrow.config import Settings, get_settings
from engagement_escrow.domain.clock import Clock, ensure_utc, utc_now
from engagement_escrow.domain.enums import (
    ActorRole,
    NotificationKind,
    OfferAction,
    OfferStatus,
    PartyType,
)
from engagement_escrow.domain.exceptions import (
    ConflictError,
    ForbiddenError,
    InputValidationError,
    OfferExpiredError,
)
from engagement_escrow.domain.fees import FeeCalculator, FeeSchedule, round_money, to_decimal
from engagement_escrow.domain.state_machine import OfferStateMachine
from engagement_escrow.infrastructure.database.orm_models import Offer
from engagement_escrow.infrastructure.database.repositories import (
    EngagementRequestRepository,
    OfferRepository,
)
from engagement_escrow.infrastructure.notifications import LoggingNotifier, dispatch
from engagement_escrow.logging_config import get_logger
from engagement_escrow.services.guards import authorize, fire_transition, get_or_raise

if TYPE_CHECKING:
    from datetime import date, datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from engagement_escrow.domain.actors import Actor
    from engagement_escrow.domain.processor_protocol import CandidateSource, Notifier

logger = get_logger(__name__)

_ACTION_EVENTS = {
    OfferAction.ACCEPT: "accept",
    OfferAction.DECLINE: "decline",
    OfferAction.COUNTER: "counter",
}


@dataclass(frozen=True)
class EngagementHandoff:
    """Everything EngagementLifecycle needs from an accepted offer."""

    offer_id: uuid.UUID
    request_id: uuid.UUID
    seeker_company_id: str
    provider_id: str
    rate: Decimal
    currency: str
    duration_hours: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    provider_amount: Decimal
    start_date: date | None = None


@dataclass(frozen=True)
class OfferResponse:
    offer: Offer
    handoff: EngagementHandoff | None = None


def _parse_uuid(value: uuid.UUID | str | None, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if not value:
        raise InputValidationError(f"{field} must not be empty", field=field)
    try:
        return uuid.UUID(str(value))
    except ValueError as err:
        raise InputValidationError(f"{field} is not a valid id", field=field) from err


def _opposite(party: str) -> PartyType:
    return PartyType.SEEKER if party == PartyType.PROVIDER.value else PartyType.PROVIDER


class OfferNegotiation:
    """Owns Offer records and their negotiation state machine."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        notifier: Notifier | None = None,
        candidates: CandidateSource | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._fees = FeeCalculator(FeeSchedule.from_settings(self._settings))
        self._offers = OfferRepository(session)
        self._requests = EngagementRequestRepository(session)
        self._notifier = notifier or LoggingNotifier()
        self._candidates = candidates
        self._clock = clock
        self._window = timedelta(hours=self._settings.counter_offer_window_hours)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        actor: Actor,
        *,
        request_id: uuid.UUID | str | None,
        provider_id: str,
        rate: Decimal | int | str,
        duration_hours: Decimal | int | str,
        currency: str | None = None,
        start_date: date | None = None,
        terms: str | None = None,
    ) -> Offer:
        """Create a pending offer from the seeker who owns the request."""
        authorize(actor.role is ActorRole.SEEKER, "Only seekers can create offers")

        req_id = _parse_uuid(request_id, "request_id")
        if not provider_id:
            raise InputValidationError("provider_id must not be empty", field="provider_id")
        rate = to_decimal(rate, "rate")
        if rate <= 0:
            raise InputValidationError("rate must be positive", field="rate")
        hours = to_decimal(duration_hours, "duration_hours")
        if hours <= 0:
            raise InputValidationError("duration_hours must be positive", field="duration_hours")

        request = await get_or_raise(self._requests, req_id)
        authorize(
            actor.is_seeker_for(request.seeker_company_id),
            "Only the seeker company that owns the request can make offers on it",
        )

        if self._candidates is not None:
            ranked = await self._candidates.ranked_candidates(str(req_id))
            if provider_id not in ranked:
                raise InputValidationError(
                    f"Provider {provider_id} is not a candidate for request {req_id}",
                    field="provider_id",
                )

        existing = await self._offers.get_open_for_pair(req_id, provider_id)
        if existing is not None and self._is_expired(existing):
            await self._expire(existing)
            existing = None
        if existing is not None:
            raise ConflictError(
                f"Offer {existing.id} is still open for this request and provider",
                code="OFFER_ALREADY_OPEN",
            )

        breakdown = self._fees.breakdown(rate * hours, currency)
        offer = Offer(
            request_id=req_id,
            seeker_company_id=request.seeker_company_id,
            provider_id=provider_id,
            created_by=actor.id,
            rate=round_money(rate),
            currency=breakdown.currency,
            start_date=start_date,
            duration_hours=hours,
            terms=terms,
            total_amount=breakdown.total,
            platform_fee=breakdown.platform_fee,
            provider_amount=breakdown.provider_amount,
            status=OfferStatus.PENDING.value,
            awaiting_party=PartyType.PROVIDER.value,
        )
        try:
            offer = await self._offers.create(offer)
        except IntegrityError as err:
            raise ConflictError(
                "An open offer for this request and provider already exists",
                code="OFFER_ALREADY_OPEN",
            ) from err

        logger.info(
            "offer.created",
            offer_id=str(offer.id),
            request_id=str(req_id),
            provider_id=provider_id,
            total=str(offer.total_amount),
            platform_fee=str(offer.platform_fee),
        )
        await dispatch(
            self._notifier,
            NotificationKind.OFFER_RECEIVED,
            offer_id=offer.id,
            recipient=provider_id,
        )
        return offer

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def respond(
        self,
        actor: Actor,
        offer_id: uuid.UUID,
        action: OfferAction | str,
        counter_rate: Decimal | int | str | None = None,
        message: str | None = None,
    ) -> OfferResponse:
        """Accept, decline or counter an open offer as the awaited party."""
        try:
            action = OfferAction(action)
        except ValueError as err:
            raise InputValidationError(f"Unknown action: {action}", field="action") from err

        offer = await get_or_raise(self._offers, offer_id)
        # A lapsed counter answers Expired whether or not a read already persisted it.
        if offer.status == OfferStatus.EXPIRED.value or self._is_expired(offer):
            raise OfferExpiredError(offer.id, self._settings.counter_offer_window_hours)

        current = offer.status
        new_status = fire_transition(OfferStateMachine, "offer", current, _ACTION_EVENTS[action])

        self._authorize_responder(actor, offer)

        now = self._clock()
        if action is OfferAction.ACCEPT:
            return await self._accept(offer, current, now)

        if action is OfferAction.COUNTER:
            if counter_rate is None:
                raise InputValidationError("counter_rate is required", field="counter_rate")
            proposed = to_decimal(counter_rate, "counter_rate")
            if proposed <= 0:
                raise InputValidationError("counter_rate must be positive", field="counter_rate")
            await self._offers.transition(
                offer,
                current,
                status=new_status,
                counter_rate=round_money(proposed),
                counter_message=message,
                countered_at=now,
                responded_at=now,
                awaiting_party=_opposite(offer.awaiting_party),
            )
            logger.info(
                "offer.countered",
                offer_id=str(offer.id),
                counter_rate=str(proposed),
                by=actor.id,
            )
            await dispatch(
                self._notifier,
                NotificationKind.OFFER_COUNTERED,
                offer_id=offer.id,
                awaiting=offer.awaiting_party,
            )
            return OfferResponse(offer=offer)

        await self._offers.transition(offer, current, status=new_status, responded_at=now)
        logger.info("offer.declined", offer_id=str(offer.id), by=actor.id)
        await dispatch(
            self._notifier,
            NotificationKind.OFFER_DECLINED,
            offer_id=offer.id,
            recipient=offer.created_by,
        )
        return OfferResponse(offer=offer)

    async def _accept(self, offer: Offer, current: str, now: datetime) -> OfferResponse:
        agreed_rate = offer.counter_rate if offer.counter_rate is not None else offer.rate
        breakdown = self._fees.breakdown(agreed_rate * offer.duration_hours, offer.currency)
        await self._offers.transition(
            offer,
            current,
            status=OfferStatus.ACCEPTED,
            rate=agreed_rate,
            total_amount=breakdown.total,
            platform_fee=breakdown.platform_fee,
            provider_amount=breakdown.provider_amount,
            responded_at=now,
        )
        declined = await self._offers.decline_siblings(offer, now)

        logger.info(
            "offer.accepted",
            offer_id=str(offer.id),
            rate=str(agreed_rate),
            total=str(breakdown.total),
            platform_fee=str(breakdown.platform_fee),
            provider_amount=str(breakdown.provider_amount),
            siblings_declined=declined,
        )
        await dispatch(
            self._notifier,
            NotificationKind.OFFER_ACCEPTED,
            offer_id=offer.id,
            recipient=offer.created_by,
        )
        handoff = EngagementHandoff(
            offer_id=offer.id,
            request_id=offer.request_id,
            seeker_company_id=offer.seeker_company_id,
            provider_id=offer.provider_id,
            rate=agreed_rate,
            currency=offer.currency,
            duration_hours=offer.duration_hours,
            total_amount=breakdown.total,
            platform_fee=breakdown.platform_fee,
            provider_amount=breakdown.provider_amount,
            start_date=offer.start_date,
        )
        return OfferResponse(offer=offer, handoff=handoff)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_offer(self, offer_id: uuid.UUID) -> Offer:
        """Fetch an offer, persisting a lapsed counter as expired."""
        offer = await get_or_raise(self._offers, offer_id)
        if self._is_expired(offer):
            await self._expire(offer)
        return offer

    async def list_offers(
        self,
        request_id: uuid.UUID | None = None,
        provider_id: str | None = None,
        status: OfferStatus | None = None,
    ) -> list[Offer]:
        return await self._offers.list(request_id, provider_id, status)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _is_expired(self, offer: Offer) -> bool:
        if offer.status != OfferStatus.COUNTERED.value or offer.countered_at is None:
            return False
        return self._clock() - ensure_utc(offer.countered_at) > self._window

    async def _expire(self, offer: Offer) -> None:
        new_status = fire_transition(OfferStateMachine, "offer", offer.status, "lapse")
        await self._offers.transition(offer, offer.status, status=new_status)
        logger.info("offer.expired", offer_id=str(offer.id))

    def _authorize_responder(self, actor: Actor, offer: Offer) -> None:
        awaited = PartyType(offer.awaiting_party)
        if awaited is PartyType.PROVIDER:
            allowed = actor.is_provider(offer.provider_id)
        else:
            allowed = actor.is_seeker_for(offer.seeker_company_id)
        if not allowed:
            raise ForbiddenError(f"Offer {offer.id} is waiting on the {awaited.value}")
