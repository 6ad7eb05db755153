"""Request/response schemas for offer negotiation."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import date, datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from engagement_escrow.domain.enums import OfferAction  # noqa: TC001
from engagement_escrow.schemas.engagements import EngagementResponse, MilestoneInput


class CreateOfferRequest(BaseModel):
    """Request body for a seeker making an offer to a provider."""

    request_id: uuid.UUID
    provider_id: str = Field(..., min_length=1, max_length=64)
    rate: Decimal = Field(..., gt=0, decimal_places=2, examples=["100.00"])
    duration_hours: Decimal = Field(..., gt=0, examples=["120"])
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    start_date: date | None = None
    terms: str | None = Field(default=None, max_length=10_000)


class RespondToOfferRequest(BaseModel):
    """Request body for accepting, declining or countering an offer.

    On accept, the optional engagement fields shape the engagement created
    from the offer.
    """

    action: OfferAction
    counter_rate: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    message: str | None = Field(default=None, max_length=2000)
    milestones: list[MilestoneInput] | None = None
    end_date: date | None = None


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    seeker_company_id: str
    provider_id: str
    rate: Decimal
    currency: str
    duration_hours: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    provider_amount: Decimal
    status: str
    awaiting_party: str
    counter_rate: Decimal | None
    counter_message: str | None
    countered_at: datetime | None
    responded_at: datetime | None
    start_date: date | None
    created_at: datetime


class OfferDecisionResponse(BaseModel):
    """The offer after a response, plus the engagement an accept created."""

    offer: OfferResponse
    engagement: EngagementResponse | None = None
