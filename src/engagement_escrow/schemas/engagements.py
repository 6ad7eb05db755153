"""Request/response schemas for engagements and milestones."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import date, datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MilestoneInput(BaseModel):
    """A milestone given either as a fixed amount or a percentage of the total."""

    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    percentage: Decimal | None = Field(default=None, ge=0, le=100)
    due_date: date | None = None

    @model_validator(mode="after")
    def _one_of_amount_or_percentage(self) -> MilestoneInput:
        if (self.amount is None) == (self.percentage is None):
            raise ValueError("Provide exactly one of amount or percentage")
        return self


class NotesRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class CompleteEngagementRequest(BaseModel):
    deliverables: list[Any] = Field(..., min_length=1)
    approved_by: str | None = Field(default=None, max_length=64)
    notes: str | None = Field(default=None, max_length=5000)
    release_payment: bool = True
    destination: str | None = Field(
        default=None,
        max_length=128,
        description="Processor account to pay; defaults to the provider's payout account",
    )


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position: int
    title: str
    amount: Decimal
    due_date: date | None
    status: str
    started_at: datetime | None
    completed_at: datetime | None


class EngagementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    offer_id: uuid.UUID
    request_id: uuid.UUID
    seeker_company_id: str
    provider_id: str
    rate: Decimal
    currency: str
    total_amount: Decimal
    facilitation_fee: Decimal
    status: str
    pre_dispute_status: str | None
    start_date: date | None
    end_date: date | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    terminated_at: datetime | None
    deliverables: list | None
    verification: dict | None
    milestones: list[MilestoneResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
