"""In-memory payment processor.

Used by the simulation script, local development and the test suite. It
keeps every authorized intent in memory, replays results for repeated
idempotency keys, and can be told to fail or stall the next N calls of an
operation so retry and timeout paths can be exercised without a network.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

from engagement_escrow.domain.exceptions import (
    ProcessorPermanentError,
    ProcessorTransientError,
)
from engagement_escrow.domain.processor_protocol import ProcessorReceipt
from engagement_escrow.logging_config import get_logger

logger = get_logger(__name__)

Operation = Literal["authorize_charge", "capture_charge", "transfer", "refund"]


@dataclass
class SimulatedIntent:
    amount: Decimal
    currency: str
    payment_method: str
    captured: bool = False
    refunded: Decimal = Decimal("0")


@dataclass
class _Fault:
    kind: Literal["transient", "permanent"]
    remaining: int


@dataclass
class SimulatedProcessor:
    """PaymentProcessor implementation with no external calls."""

    intents: dict[str, SimulatedIntent] = field(default_factory=dict)
    transfers: list[dict] = field(default_factory=list)
    refunds: list[dict] = field(default_factory=list)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _receipts: dict[str, ProcessorReceipt] = field(default_factory=dict)
    _faults: dict[str, _Fault] = field(default_factory=dict)
    _latency: dict[str, float] = field(default_factory=lambda: defaultdict(float))

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_next(
        self,
        operation: Operation,
        kind: Literal["transient", "permanent"] = "transient",
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of `operation` fail."""
        self._faults[operation] = _Fault(kind=kind, remaining=times)

    def set_latency(self, operation: Operation, seconds: float) -> None:
        """Delay every call of `operation`, e.g. to trip the caller's timeout."""
        self._latency[operation] = seconds

    # ------------------------------------------------------------------
    # PaymentProcessor
    # ------------------------------------------------------------------

    async def authorize_charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt:
        replay = await self._enter("authorize_charge", idempotency_key)
        if replay is not None:
            return replay
        if amount <= 0:
            raise ProcessorPermanentError(
                "Charge amount must be positive", "authorize_charge", idempotency_key
            )
        intent_id = f"pi_sim_{uuid.uuid4().hex[:24]}"
        self.intents[intent_id] = SimulatedIntent(
            amount=amount, currency=currency, payment_method=payment_method
        )
        return self._remember(idempotency_key, ProcessorReceipt(intent_id, amount))

    async def capture_charge(self, intent_id: str, *, idempotency_key: str) -> ProcessorReceipt:
        replay = await self._enter("capture_charge", idempotency_key)
        if replay is not None:
            return replay
        intent = self._intent_or_raise(intent_id, "capture_charge", idempotency_key)
        if intent.captured:
            raise ProcessorPermanentError(
                f"Intent {intent_id} already captured", "capture_charge", idempotency_key
            )
        intent.captured = True
        return self._remember(idempotency_key, ProcessorReceipt(intent_id, intent.amount))

    async def transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt:
        replay = await self._enter("transfer", idempotency_key)
        if replay is not None:
            return replay
        if amount <= 0:
            raise ProcessorPermanentError(
                "Transfer amount must be positive", "transfer", idempotency_key
            )
        if not destination:
            raise ProcessorPermanentError("Missing destination", "transfer", idempotency_key)
        transfer_id = f"tr_sim_{uuid.uuid4().hex[:24]}"
        self.transfers.append(
            {
                "id": transfer_id,
                "amount": amount,
                "currency": currency,
                "destination": destination,
                "idempotency_key": idempotency_key,
            }
        )
        return self._remember(idempotency_key, ProcessorReceipt(transfer_id, amount))

    async def refund(
        self,
        intent_id: str,
        amount: Decimal | None = None,
        *,
        idempotency_key: str,
    ) -> ProcessorReceipt:
        replay = await self._enter("refund", idempotency_key)
        if replay is not None:
            return replay
        intent = self._intent_or_raise(intent_id, "refund", idempotency_key)
        if not intent.captured:
            raise ProcessorPermanentError(
                f"Intent {intent_id} was never captured", "refund", idempotency_key
            )
        refundable = intent.amount - intent.refunded
        value = refundable if amount is None else amount
        if value <= 0 or value > refundable:
            raise ProcessorPermanentError(
                f"Refund {value} exceeds refundable {refundable}", "refund", idempotency_key
            )
        intent.refunded += value
        refund_id = f"re_sim_{uuid.uuid4().hex[:24]}"
        self.refunds.append(
            {
                "id": refund_id,
                "intent_id": intent_id,
                "amount": value,
                "idempotency_key": idempotency_key,
            }
        )
        return self._remember(idempotency_key, ProcessorReceipt(refund_id, value))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _enter(self, operation: str, idempotency_key: str) -> ProcessorReceipt | None:
        self.calls.append((operation, idempotency_key))
        if self._latency[operation]:
            await asyncio.sleep(self._latency[operation])

        fault = self._faults.get(operation)
        if fault is not None and fault.remaining > 0:
            fault.remaining -= 1
            logger.debug("processor.simulated_fault", operation=operation, kind=fault.kind)
            if fault.kind == "transient":
                raise ProcessorTransientError(
                    f"Simulated transient failure in {operation}", operation, idempotency_key
                )
            raise ProcessorPermanentError(
                f"Simulated permanent failure in {operation}", operation, idempotency_key
            )

        return self._receipts.get(idempotency_key)

    def _remember(self, idempotency_key: str, receipt: ProcessorReceipt) -> ProcessorReceipt:
        self._receipts[idempotency_key] = receipt
        return receipt

    def _intent_or_raise(
        self, intent_id: str, operation: str, idempotency_key: str
    ) -> SimulatedIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise ProcessorPermanentError(
                f"Unknown payment intent {intent_id}", operation, idempotency_key
            )
        return intent
