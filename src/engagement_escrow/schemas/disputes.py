"""Request/response schemas for disputes."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from engagement_escrow.domain.enums import DisputeOutcome, DisputeReason


class FileDisputeRequest(BaseModel):
    engagement_id: uuid.UUID
    reason: DisputeReason
    description: str = Field(..., min_length=1, max_length=5000)


class ResolveDisputeRequest(BaseModel):
    """Admin decision on a dispute.

    refund_amount goes back to the seeker; any remainder of the held payment
    is released to the provider less the platform fee on it.
    """

    resolution: str = Field(..., min_length=1, max_length=5000)
    refund_amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    engagement_outcome: DisputeOutcome = DisputeOutcome.RESTORE
    destination: str | None = Field(default=None, max_length=128)


class CloseDisputeRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    engagement_id: uuid.UUID
    escrow_payment_id: uuid.UUID | None
    reason: str
    description: str
    filed_by_id: str
    filed_by_type: str
    status: str
    resolution: str | None
    engagement_outcome: str | None
    refund_amount: Decimal | None
    resolved_by: str | None
    resolved_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
