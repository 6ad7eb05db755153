"""Boundary protocols for the external collaborators.

These are Protocols (structural subtyping): the payment processor adapters,
the candidate ranking source and the notification dispatcher only need to
match the shape. The domain layer has no imports from stripe, redis or any
other external service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal

    from engagement_escrow.domain.enums import NotificationKind


@dataclass(frozen=True)
class ProcessorReceipt:
    """Result of a successful processor call.

    Attributes:
        reference: Processor-side id (payment intent, transfer or refund id).
        amount: Amount the call moved, if any.
        raw: Selected processor response fields kept for reconciliation.
    """

    reference: str
    amount: Decimal | None = None
    raw: dict | None = None


@runtime_checkable
class PaymentProcessor(Protocol):
    """Narrow contract with the payment processor.

    Every call takes an idempotency key; repeating a call with the same key
    must not repeat its effect. Failures are raised as ProcessorTransientError
    (safe to retry with the same key) or ProcessorPermanentError.

    Concrete implementations:
        - infrastructure/payments/simulated.py (in-memory)
        - infrastructure/payments/stripe_processor.py (stripe SDK)
    """

    async def authorize_charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt: ...

    async def capture_charge(
        self, intent_id: str, *, idempotency_key: str
    ) -> ProcessorReceipt: ...

    async def transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt: ...

    async def refund(
        self,
        intent_id: str,
        amount: Decimal | None = None,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt: ...


@runtime_checkable
class CandidateSource(Protocol):
    """Ranked provider ids for an engagement request. Ranking is external."""

    async def ranked_candidates(self, request_id: str) -> list[str]: ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget notification dispatch."""

    async def notify(self, kind: NotificationKind, **payload: object) -> None: ...
