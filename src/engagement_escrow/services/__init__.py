"""Application services - use case orchestration."""

from engagement_escrow.services.dispute_resolver import DisputeResolver
from engagement_escrow.services.engagement_lifecycle import EngagementLifecycle, MilestoneSpec
from engagement_escrow.services.escrow_ledger import EscrowLedger
from engagement_escrow.services.offer_negotiation import (
    EngagementHandoff,
    OfferNegotiation,
    OfferResponse,
)

__all__ = [
    "DisputeResolver",
    "EngagementHandoff",
    "EngagementLifecycle",
    "EscrowLedger",
    "MilestoneSpec",
    "OfferNegotiation",
    "OfferResponse",
]
