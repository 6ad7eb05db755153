"""Dispute REST API routes.

Routes:
    POST   /api/v1/disputes               - File a dispute (freezes the engagement)
    GET    /api/v1/disputes/{id}
    POST   /api/v1/disputes/{id}/review   - Admin starts review
    POST   /api/v1/disputes/{id}/resolve  - Admin settles funds and outcome
    POST   /api/v1/disputes/{id}/close    - Admin closes
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends

from engagement_escrow.api.deps import get_actor, get_dispute_resolver
from engagement_escrow.domain.actors import Actor  # noqa: TC001
from engagement_escrow.schemas.disputes import (
    CloseDisputeRequest,
    DisputeResponse,
    FileDisputeRequest,
    ResolveDisputeRequest,
)
from engagement_escrow.services import DisputeResolver

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])


@router.post("", response_model=DisputeResponse, status_code=201, summary="File a dispute")
async def file_dispute(
    request: FileDisputeRequest,
    actor: Actor = Depends(get_actor),
    resolver: DisputeResolver = Depends(get_dispute_resolver),
) -> DisputeResponse:
    dispute = await resolver.file(
        actor, request.engagement_id, request.reason, request.description
    )
    return DisputeResponse.model_validate(dispute)


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: uuid.UUID,
    resolver: DisputeResolver = Depends(get_dispute_resolver),
) -> DisputeResponse:
    dispute = await resolver.get_dispute(dispute_id)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/review", response_model=DisputeResponse)
async def begin_review(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    resolver: DisputeResolver = Depends(get_dispute_resolver),
) -> DisputeResponse:
    dispute = await resolver.begin_review(actor, dispute_id)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_actor),
    resolver: DisputeResolver = Depends(get_dispute_resolver),
) -> DisputeResponse:
    """Refund (if any) is settled with the processor before any status changes."""
    dispute = await resolver.resolve(
        actor,
        dispute_id,
        resolution=request.resolution,
        refund_amount=request.refund_amount,
        engagement_outcome=request.engagement_outcome,
        destination=request.destination,
    )
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/close", response_model=DisputeResponse)
async def close_dispute(
    dispute_id: uuid.UUID,
    request: CloseDisputeRequest | None = None,
    actor: Actor = Depends(get_actor),
    resolver: DisputeResolver = Depends(get_dispute_resolver),
) -> DisputeResponse:
    notes = request.notes if request else None
    dispute = await resolver.close(actor, dispute_id, notes)
    return DisputeResponse.model_validate(dispute)
