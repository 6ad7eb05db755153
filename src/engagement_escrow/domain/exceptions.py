"""Domain exceptions for the engagement escrow service.

These exceptions are framework-agnostic and represent business rule violations.
Each carries an ErrorKind so the API layer's middleware can translate it to an
HTTP response without knowing every concrete class.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    """Coarse error categories returned to callers."""

    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    PROCESSOR_TRANSIENT = "processor_transient"
    PROCESSOR_PERMANENT = "processor_permanent"


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.CONFLICT

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.PROCESSOR_TRANSIENT


# --- Input & Authorization Errors ---


class InputValidationError(MarketplaceError):
    """Raised for malformed input. Always recoverable by the caller."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class ForbiddenError(MarketplaceError):
    """Raised when the caller lacks the role or relationship for a transition."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


class EntityNotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code=f"{entity.upper().replace(' ', '_')}_NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = str(entity_id)


# --- State Errors ---


class ConflictError(MarketplaceError):
    """Raised when an entity exists but its state does not permit the request."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(ConflictError):
    """Raised when an attempted state transition is not allowed.

    Example: pending -> released (the payment must be held first).
    """

    def __init__(self, entity: str, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid {entity} transition: {attempted} from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.entity = entity
        self.current_state = current_state
        self.attempted = attempted


class ConcurrentModificationError(ConflictError):
    """Raised when a status-guarded write finds the row already moved on."""

    def __init__(self, entity: str, entity_id: object, expected_status: str) -> None:
        super().__init__(
            message=(
                f"{entity} {entity_id} changed concurrently; "
                f"expected status {expected_status}"
            ),
            code="CONCURRENT_MODIFICATION",
        )
        self.expected_status = expected_status


class DisputeOpenError(ConflictError):
    """Raised when an ordinary transition is attempted on a disputed engagement."""

    def __init__(self, engagement_id: object, dispute_id: object) -> None:
        super().__init__(
            message=f"Engagement {engagement_id} is frozen by open dispute {dispute_id}",
            code="DISPUTE_OPEN",
        )
        self.dispute_id = str(dispute_id)


class DuplicateOperationError(ConflictError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


class OfferExpiredError(MarketplaceError):
    """Raised when responding to a counter-offer after its window elapsed."""

    kind = ErrorKind.EXPIRED

    def __init__(self, offer_id: object, window_hours: int) -> None:
        super().__init__(
            message=f"Counter-offer on {offer_id} expired after {window_hours}h",
            code="OFFER_EXPIRED",
        )


# --- Payment Processor Errors ---


class PaymentProcessorError(MarketplaceError):
    """Raised when a payment processor call fails."""

    kind = ErrorKind.PROCESSOR_PERMANENT

    def __init__(
        self,
        message: str,
        operation: str,
        idempotency_key: str | None = None,
    ) -> None:
        super().__init__(message=message, code="PAYMENT_PROCESSOR_ERROR")
        self.operation = operation
        self.idempotency_key = idempotency_key


class ProcessorTransientError(PaymentProcessorError):
    """The call failed in a retryable way. Retry with the same idempotency key."""

    kind = ErrorKind.PROCESSOR_TRANSIENT

    def __init__(
        self, message: str, operation: str, idempotency_key: str | None = None
    ) -> None:
        super().__init__(message, operation, idempotency_key)
        self.code = "PROCESSOR_TRANSIENT"


class ProcessorPermanentError(PaymentProcessorError):
    """The call was definitively rejected. Needs manual intervention."""

    def __init__(
        self, message: str, operation: str, idempotency_key: str | None = None
    ) -> None:
        super().__init__(message, operation, idempotency_key)
        self.code = "PROCESSOR_PERMANENT"
