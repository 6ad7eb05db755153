"""Domain layer: pure business rules with zero framework dependencies."""

from engagement_escrow.domain.actors import Actor
from engagement_escrow.domain.enums import (
    DisputeStatus,
    EngagementStatus,
    EscrowStatus,
    OfferStatus,
)
from engagement_escrow.domain.exceptions import (
    ConflictError,
    MarketplaceError,
    ProcessorTransientError,
)
from engagement_escrow.domain.fees import FeeBreakdown, FeeCalculator, FeeSchedule
from engagement_escrow.domain.processor_protocol import PaymentProcessor, ProcessorReceipt
from engagement_escrow.domain.state_machine import validate_transition

__all__ = [
    "Actor",
    "ConflictError",
    "DisputeStatus",
    "EngagementStatus",
    "EscrowStatus",
    "FeeBreakdown",
    "FeeCalculator",
    "FeeSchedule",
    "MarketplaceError",
    "OfferStatus",
    "PaymentProcessor",
    "ProcessorReceipt",
    "ProcessorTransientError",
    "validate_transition",
]
