"""Fee quote endpoint."""

from __future__ import annotations

from decimal import Decimal  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query

from engagement_escrow.api.deps import get_app_settings
from engagement_escrow.config import Settings  # noqa: TC001
from engagement_escrow.domain.fees import FeeCalculator, FeeSchedule
from engagement_escrow.schemas.escrow import FeeQuoteResponse

router = APIRouter(prefix="/api/v1", tags=["Fees"])


@router.get("/fees", response_model=FeeQuoteResponse, summary="Quote fees for an amount")
async def quote_fees(
    amount: Decimal = Query(..., ge=0),
    currency: str | None = Query(default=None, min_length=3, max_length=3),
    settings: Settings = Depends(get_app_settings),
) -> FeeQuoteResponse:
    fees = FeeCalculator(FeeSchedule.from_settings(settings))
    breakdown = fees.breakdown(amount, currency)
    return FeeQuoteResponse(
        amount=breakdown.total,
        currency=breakdown.currency,
        platform_fee=breakdown.platform_fee,
        facilitation_fee=fees.facilitation_fee(breakdown.total),
        processor_fee=fees.processor_fee(breakdown.total),
        total_fees=fees.total_fees(breakdown.total),
        net_amount=fees.net_amount(breakdown.total),
        provider_amount=breakdown.provider_amount,
        schedule=fees.fee_schedule(),
    )
