"""Offer negotiation REST API routes.

Routes:
    POST   /api/v1/offers               - Seeker makes an offer
    GET    /api/v1/offers/{id}          - Get an offer (persists lapsed expiry)
    POST   /api/v1/offers/{id}/respond  - Accept, decline or counter
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends

from engagement_escrow.api.deps import (
    get_actor,
    get_engagement_lifecycle,
    get_offer_negotiation,
)
from engagement_escrow.domain.actors import Actor  # noqa: TC001
from engagement_escrow.logging_config import get_logger
from engagement_escrow.schemas.engagements import EngagementResponse
from engagement_escrow.schemas.offers import (
    CreateOfferRequest,
    OfferDecisionResponse,
    OfferResponse,
    RespondToOfferRequest,
)
from engagement_escrow.services import (
    EngagementLifecycle,
    MilestoneSpec,
    OfferNegotiation,
)

router = APIRouter(prefix="/api/v1/offers", tags=["Offers"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=OfferResponse,
    status_code=201,
    summary="Create an offer",
)
async def create_offer(
    request: CreateOfferRequest,
    actor: Actor = Depends(get_actor),
    negotiation: OfferNegotiation = Depends(get_offer_negotiation),
) -> OfferResponse:
    offer = await negotiation.create_offer(
        actor,
        request_id=request.request_id,
        provider_id=request.provider_id,
        rate=request.rate,
        duration_hours=request.duration_hours,
        currency=request.currency,
        start_date=request.start_date,
        terms=request.terms,
    )
    return OfferResponse.model_validate(offer)


@router.get("/{offer_id}", response_model=OfferResponse, summary="Get an offer")
async def get_offer(
    offer_id: uuid.UUID,
    negotiation: OfferNegotiation = Depends(get_offer_negotiation),
) -> OfferResponse:
    offer = await negotiation.get_offer(offer_id)
    return OfferResponse.model_validate(offer)


@router.post(
    "/{offer_id}/respond",
    response_model=OfferDecisionResponse,
    summary="Respond to an offer",
)
async def respond_to_offer(
    offer_id: uuid.UUID,
    request: RespondToOfferRequest,
    actor: Actor = Depends(get_actor),
    negotiation: OfferNegotiation = Depends(get_offer_negotiation),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> OfferDecisionResponse:
    """Respond as the awaited party. Accepting creates the staged engagement."""
    result = await negotiation.respond(
        actor,
        offer_id,
        request.action,
        counter_rate=request.counter_rate,
        message=request.message,
    )

    engagement = None
    if result.handoff is not None:
        milestones = [
            MilestoneSpec(
                title=m.title,
                amount=m.amount,
                percentage=m.percentage,
                due_date=m.due_date,
            )
            for m in request.milestones or []
        ]
        created = await lifecycle.create_from_handoff(
            result.handoff,
            milestones=milestones,
            end_date=request.end_date,
        )
        engagement = EngagementResponse.model_validate(created)

    return OfferDecisionResponse(
        offer=OfferResponse.model_validate(result.offer),
        engagement=engagement,
    )
