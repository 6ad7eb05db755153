"""Escrow payment REST API routes.

Routes:
    POST   /api/v1/escrow              - Authorize a charge for an active engagement
    GET    /api/v1/escrow/{id}         - Get payment details
    POST   /api/v1/escrow/{id}/hold    - Capture the charge
    POST   /api/v1/escrow/{id}/release - Pay the provider (engagement completed)
    POST   /api/v1/escrow/{id}/refund  - Refund the seeker (admin)
    POST   /api/v1/payout-accounts     - Register a provider payout destination

POST /escrow honours an optional Idempotency-Key header: the first request
with a key claims it in Redis, a repeat returns the stored response, and a
repeat while the first is still running is rejected as a duplicate.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

import redis.asyncio as aioredis  # noqa: TC002
from fastapi import APIRouter, Depends, Header

from engagement_escrow.api.deps import (
    get_actor,
    get_app_settings,
    get_escrow_ledger,
    get_optional_redis,
)
from engagement_escrow.config import Settings  # noqa: TC001
from engagement_escrow.domain.actors import Actor  # noqa: TC001
from engagement_escrow.domain.exceptions import DuplicateOperationError
from engagement_escrow.infrastructure.redis_client import (
    claim_idempotency,
    get_idempotent_result,
    release_idempotency,
    store_idempotent_result,
)
from engagement_escrow.logging_config import get_logger
from engagement_escrow.schemas.escrow import (
    CreateEscrowRequest,
    EscrowResponse,
    PayoutAccountRequest,
    PayoutAccountResponse,
    RefundEscrowRequest,
    ReleaseEscrowRequest,
)
from engagement_escrow.services import EscrowLedger

router = APIRouter(prefix="/api/v1", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "/escrow",
    response_model=EscrowResponse,
    status_code=201,
    summary="Create an escrow payment",
)
async def create_escrow(
    request: CreateEscrowRequest,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
    settings: Settings = Depends(get_app_settings),
    redis: aioredis.Redis | None = Depends(get_optional_redis),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=128),
) -> EscrowResponse:
    """Authorize the charge and record the payment as pending."""
    if idempotency_key and redis is None:
        logger.warning("idempotency.redis_unavailable", key=idempotency_key)
    use_key = bool(idempotency_key) and redis is not None
    ttl = settings.redis_idempotency_ttl_seconds

    if use_key and not await claim_idempotency(redis, idempotency_key, ttl):
        cached = await get_idempotent_result(redis, idempotency_key)
        if cached is None:
            raise DuplicateOperationError(idempotency_key)
        logger.info("idempotency.replayed", key=idempotency_key)
        return EscrowResponse.model_validate_json(cached)

    try:
        payment = await ledger.create_escrow_payment(
            actor,
            request.engagement_id,
            payment_method=request.payment_method,
            amount=request.amount,
            currency=request.currency,
        )
    except Exception:
        if use_key:
            await release_idempotency(redis, idempotency_key)
        raise

    response = EscrowResponse.model_validate(payment)
    if use_key:
        await store_idempotent_result(redis, idempotency_key, response.model_dump_json(), ttl)
    return response


@router.get("/escrow/{payment_id}", response_model=EscrowResponse, summary="Get escrow payment")
async def get_escrow(
    payment_id: uuid.UUID,
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowResponse:
    payment = await ledger.get_payment(payment_id)
    return EscrowResponse.model_validate(payment)


# ---------------------------------------------------------------------------
# Money movements
# ---------------------------------------------------------------------------


@router.post("/escrow/{payment_id}/hold", response_model=EscrowResponse)
async def hold_escrow(
    payment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowResponse:
    """Capture the authorized charge. A 503 leaves the payment pending; retry is safe."""
    payment = await ledger.hold_payment(actor, payment_id)
    return EscrowResponse.model_validate(payment)


@router.post("/escrow/{payment_id}/release", response_model=EscrowResponse)
async def release_escrow(
    payment_id: uuid.UUID,
    request: ReleaseEscrowRequest | None = None,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowResponse:
    destination = request.destination if request else None
    payment = await ledger.release(actor, payment_id, destination)
    return EscrowResponse.model_validate(payment)


@router.post("/escrow/{payment_id}/refund", response_model=EscrowResponse)
async def refund_escrow(
    payment_id: uuid.UUID,
    request: RefundEscrowRequest,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowResponse:
    payment = await ledger.refund(
        actor,
        payment_id,
        reason=request.reason,
        amount=request.amount,
        destination=request.destination,
    )
    return EscrowResponse.model_validate(payment)


# ---------------------------------------------------------------------------
# Payout accounts
# ---------------------------------------------------------------------------


@router.post(
    "/payout-accounts",
    response_model=PayoutAccountResponse,
    summary="Register or update a provider payout account",
)
async def register_payout_account(
    request: PayoutAccountRequest,
    actor: Actor = Depends(get_actor),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> PayoutAccountResponse:
    account = await ledger.register_payout_account(
        actor,
        request.provider_id,
        request.destination,
        payouts_enabled=request.payouts_enabled,
    )
    return PayoutAccountResponse.model_validate(account)
