"""Single choke point for every payment processor call.

Each call is:
    - bounded by processor_timeout_seconds (a timeout counts as transient),
    - retried with exponential backoff while the failure is transient,
    - logged with its idempotency key, the pre-call local status and outcome,
      so a reconciliation job can find records stuck in pending or held.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from engagement_escrow.domain.exceptions import (
    PaymentProcessorError,
    ProcessorTransientError,
)
from engagement_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from engagement_escrow.config import Settings
    from engagement_escrow.domain.processor_protocol import (
        PaymentProcessor,
        ProcessorReceipt,
    )

logger = get_logger(__name__)


class ProcessorGateway:
    """Wraps a PaymentProcessor with timeout, retry and audit logging."""

    def __init__(self, processor: PaymentProcessor, settings: Settings) -> None:
        self.processor = processor
        self._timeout = settings.processor_timeout_seconds
        self._max_attempts = settings.processor_max_attempts
        self._backoff = settings.processor_backoff_seconds
        self._backoff_max = settings.processor_backoff_max_seconds

    async def call(
        self,
        operation: str,
        *args: Any,
        idempotency_key: str,
        pre_status: str,
        **kwargs: Any,
    ) -> ProcessorReceipt:
        """Invoke `processor.<operation>` and return its receipt.

        Raises:
            ProcessorTransientError: Still failing after the last attempt.
            ProcessorPermanentError: Definitive rejection, never retried.
        """
        method: Callable[..., Awaitable[ProcessorReceipt]] = getattr(self.processor, operation)
        log = logger.bind(
            operation=operation,
            idempotency_key=idempotency_key,
            pre_status=pre_status,
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff, max=self._backoff_max),
            retry=retry_if_exception_type(ProcessorTransientError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_no = attempt.retry_state.attempt_number
                    log.info("processor.call_started", attempt=attempt_no)
                    try:
                        receipt = await asyncio.wait_for(
                            method(*args, idempotency_key=idempotency_key, **kwargs),
                            timeout=self._timeout,
                        )
                    except TimeoutError as exc:
                        raise ProcessorTransientError(
                            f"{operation} timed out after {self._timeout}s",
                            operation,
                            idempotency_key,
                        ) from exc
                    except ProcessorTransientError as exc:
                        log.warning(
                            "processor.transient_failure",
                            attempt=attempt_no,
                            error=exc.message,
                        )
                        raise
        except PaymentProcessorError as exc:
            log.error(
                "processor.call_failed",
                outcome=exc.kind.value,
                error=exc.message,
            )
            raise

        log.info("processor.call_succeeded", outcome="success", reference=receipt.reference)
        return receipt
