"""Request/response schemas for escrow payments, payout accounts and fees."""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field


class CreateEscrowRequest(BaseModel):
    """Request body for funding escrow on an active engagement."""

    engagement_id: uuid.UUID
    payment_method: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Processor payment method id",
        examples=["pm_card_visa"],
    )
    amount: Decimal | None = Field(
        default=None,
        gt=0,
        decimal_places=2,
        description="Defaults to the engagement total",
    )
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class ReleaseEscrowRequest(BaseModel):
    destination: str | None = Field(default=None, max_length=128)


class RefundEscrowRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    amount: Decimal | None = Field(
        default=None,
        gt=0,
        decimal_places=2,
        description="Partial refund; the remainder is released to the provider",
    )
    destination: str | None = Field(default=None, max_length=128)


class EscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    engagement_id: uuid.UUID
    amount: Decimal
    currency: str
    platform_fee: Decimal
    provider_amount: Decimal
    refunded_amount: Decimal
    released_amount: Decimal
    status: str
    payment_intent_id: str | None
    transfer_id: str | None
    refund_id: str | None
    destination: str | None
    held_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PayoutAccountRequest(BaseModel):
    provider_id: str = Field(..., min_length=1, max_length=64)
    destination: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Processor connected-account id",
        examples=["acct_1Example"],
    )
    payouts_enabled: bool = True


class PayoutAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_id: str
    destination: str
    payouts_enabled: bool


class FeeQuoteResponse(BaseModel):
    """Every fee the marketplace would charge on an amount."""

    amount: Decimal
    currency: str
    platform_fee: Decimal
    facilitation_fee: Decimal
    processor_fee: Decimal
    total_fees: Decimal
    net_amount: Decimal
    provider_amount: Decimal
    schedule: dict


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    processor: str = "unknown"
