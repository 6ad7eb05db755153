"""Stripe-backed payment processor.

Escrow maps onto Stripe as follows:
    authorize_charge -> PaymentIntent with capture_method="manual", confirmed
    capture_charge   -> PaymentIntent.capture
    transfer         -> Connect Transfer to the provider's account
    refund           -> Refund against the PaymentIntent

The stripe SDK is synchronous, so each call runs in a worker thread. Stripe
errors are translated to the domain's transient/permanent split.
"""

from __future__ import annotations

import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

import stripe

from engagement_escrow.domain.exceptions import (
    PaymentProcessorError,
    ProcessorPermanentError,
    ProcessorTransientError,
)
from engagement_escrow.domain.processor_protocol import ProcessorReceipt
from engagement_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

# Stripe errors worth retrying with the same idempotency key.
_TRANSIENT_ERRORS: tuple[type[stripe.StripeError], ...] = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


def to_minor_units(amount: Decimal) -> int:
    """Stripe amounts are integers in the currency's smallest unit."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None) -> Decimal | None:
    if amount is None:
        return None
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def translate_stripe_error(
    exc: stripe.StripeError, operation: str, idempotency_key: str
) -> PaymentProcessorError:
    message = exc.user_message or str(exc) or exc.__class__.__name__
    if isinstance(exc, _TRANSIENT_ERRORS):
        return ProcessorTransientError(message, operation, idempotency_key)
    return ProcessorPermanentError(message, operation, idempotency_key)


class StripeProcessor:
    """PaymentProcessor implementation on top of the stripe SDK."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("A Stripe secret key is required")
        self._api_key = api_key

    async def authorize_charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt:
        intent = await self._call(
            "authorize_charge",
            idempotency_key,
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency.lower(),
            payment_method=payment_method,
            capture_method="manual",
            confirm=True,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            metadata={"idempotency_key": idempotency_key},
        )
        return ProcessorReceipt(
            reference=intent["id"],
            amount=from_minor_units(intent.get("amount")),
            raw={"status": intent.get("status")},
        )

    async def capture_charge(self, intent_id: str, *, idempotency_key: str) -> ProcessorReceipt:
        intent = await self._call(
            "capture_charge",
            idempotency_key,
            stripe.PaymentIntent.capture,
            intent_id,
        )
        if intent.get("status") != "succeeded":
            raise ProcessorPermanentError(
                f"Capture of {intent_id} ended in status {intent.get('status')}",
                "capture_charge",
                idempotency_key,
            )
        return ProcessorReceipt(
            reference=intent["id"],
            amount=from_minor_units(intent.get("amount_received")),
            raw={"status": intent.get("status")},
        )

    async def transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt:
        transfer = await self._call(
            "transfer",
            idempotency_key,
            stripe.Transfer.create,
            amount=to_minor_units(amount),
            currency=currency.lower(),
            destination=destination,
            metadata={"idempotency_key": idempotency_key},
        )
        return ProcessorReceipt(
            reference=transfer["id"],
            amount=from_minor_units(transfer.get("amount")),
        )

    async def refund(
        self,
        intent_id: str,
        amount: Decimal | None = None,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt:
        params: dict[str, Any] = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        refund = await self._call("refund", idempotency_key, stripe.Refund.create, **params)
        return ProcessorReceipt(
            reference=refund["id"],
            amount=from_minor_units(refund.get("amount")),
            raw={"status": refund.get("status")},
        )

    async def _call(
        self,
        operation: str,
        idempotency_key: str,
        fn: Callable[..., Any],
        *args: Any,
        **params: Any,
    ) -> Any:
        try:
            return await asyncio.to_thread(
                fn,
                *args,
                api_key=self._api_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as exc:
            logger.warning(
                "stripe.call_failed",
                operation=operation,
                idempotency_key=idempotency_key,
                error_type=exc.__class__.__name__,
                http_status=exc.http_status,
            )
            raise translate_stripe_error(exc, operation, idempotency_key) from exc
