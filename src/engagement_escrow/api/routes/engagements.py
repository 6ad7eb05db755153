"""Engagement lifecycle REST API routes.

Routes:
    GET    /api/v1/engagements/{id}
    POST   /api/v1/engagements/{id}/{interview|accept|activate}
    POST   /api/v1/engagements/{id}/{start|pause|resume}
    POST   /api/v1/engagements/{id}/complete
    POST   /api/v1/engagements/{id}/{cancel|terminate}
    POST   /api/v1/engagements/{id}/milestones/{position}/{start|complete}
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends

from engagement_escrow.api.deps import get_actor, get_engagement_lifecycle
from engagement_escrow.domain.actors import Actor  # noqa: TC001
from engagement_escrow.schemas.engagements import (
    CompleteEngagementRequest,
    EngagementResponse,
    MilestoneResponse,
    NotesRequest,
)
from engagement_escrow.services import EngagementLifecycle

router = APIRouter(prefix="/api/v1/engagements", tags=["Engagements"])


@router.get("/{engagement_id}", response_model=EngagementResponse, summary="Get an engagement")
async def get_engagement(
    engagement_id: uuid.UUID,
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.get_engagement(engagement_id)
    return EngagementResponse.model_validate(engagement)


# ---------------------------------------------------------------------------
# Pre-work pipeline
# ---------------------------------------------------------------------------


@router.post("/{engagement_id}/interview", response_model=EngagementResponse)
async def schedule_interview(
    engagement_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.schedule_interview(actor, engagement_id)
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/accept", response_model=EngagementResponse)
async def accept_candidate(
    engagement_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.accept(actor, engagement_id)
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/activate", response_model=EngagementResponse)
async def activate(
    engagement_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.activate(actor, engagement_id)
    return EngagementResponse.model_validate(engagement)


# ---------------------------------------------------------------------------
# Work
# ---------------------------------------------------------------------------


@router.post("/{engagement_id}/start", response_model=EngagementResponse)
async def start(
    engagement_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.start(actor, engagement_id)
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/pause", response_model=EngagementResponse)
async def pause(
    engagement_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.pause(actor, engagement_id)
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/resume", response_model=EngagementResponse)
async def resume(
    engagement_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    engagement = await lifecycle.resume(actor, engagement_id)
    return EngagementResponse.model_validate(engagement)


@router.post(
    "/{engagement_id}/complete",
    response_model=EngagementResponse,
    summary="Complete an engagement and release its escrow",
)
async def complete(
    engagement_id: uuid.UUID,
    request: CompleteEngagementRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    """Completes only after the held payment was transferred, unless release_payment is false."""
    engagement = await lifecycle.complete(
        actor,
        engagement_id,
        deliverables=request.deliverables,
        approved_by=request.approved_by,
        notes=request.notes,
        release_payment=request.release_payment,
        destination=request.destination,
    )
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/cancel", response_model=EngagementResponse)
async def cancel(
    engagement_id: uuid.UUID,
    request: NotesRequest | None = None,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    notes = request.notes if request else None
    engagement = await lifecycle.cancel(actor, engagement_id, notes)
    return EngagementResponse.model_validate(engagement)


@router.post("/{engagement_id}/terminate", response_model=EngagementResponse)
async def terminate(
    engagement_id: uuid.UUID,
    request: NotesRequest | None = None,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> EngagementResponse:
    notes = request.notes if request else None
    engagement = await lifecycle.terminate(actor, engagement_id, notes)
    return EngagementResponse.model_validate(engagement)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@router.post(
    "/{engagement_id}/milestones/{position}/start",
    response_model=MilestoneResponse,
)
async def start_milestone(
    engagement_id: uuid.UUID,
    position: int,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> MilestoneResponse:
    milestone = await lifecycle.start_milestone(actor, engagement_id, position)
    return MilestoneResponse.model_validate(milestone)


@router.post(
    "/{engagement_id}/milestones/{position}/complete",
    response_model=MilestoneResponse,
)
async def complete_milestone(
    engagement_id: uuid.UUID,
    position: int,
    actor: Actor = Depends(get_actor),
    lifecycle: EngagementLifecycle = Depends(get_engagement_lifecycle),
) -> MilestoneResponse:
    milestone = await lifecycle.complete_milestone(actor, engagement_id, position)
    return MilestoneResponse.model_validate(milestone)
