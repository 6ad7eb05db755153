"""Pydantic API schemas."""

from engagement_escrow.schemas.disputes import (
    CloseDisputeRequest,
    DisputeResponse,
    FileDisputeRequest,
    ResolveDisputeRequest,
)
from engagement_escrow.schemas.engagements import (
    CompleteEngagementRequest,
    EngagementResponse,
    MilestoneInput,
    MilestoneResponse,
    NotesRequest,
)
from engagement_escrow.schemas.escrow import (
    CreateEscrowRequest,
    EscrowResponse,
    FeeQuoteResponse,
    HealthResponse,
    PayoutAccountRequest,
    PayoutAccountResponse,
    RefundEscrowRequest,
    ReleaseEscrowRequest,
)
from engagement_escrow.schemas.offers import (
    CreateOfferRequest,
    OfferDecisionResponse,
    OfferResponse,
    RespondToOfferRequest,
)

__all__ = [
    "CloseDisputeRequest",
    "CompleteEngagementRequest",
    "CreateEscrowRequest",
    "CreateOfferRequest",
    "DisputeResponse",
    "EngagementResponse",
    "EscrowResponse",
    "FeeQuoteResponse",
    "FileDisputeRequest",
    "HealthResponse",
    "MilestoneInput",
    "MilestoneResponse",
    "NotesRequest",
    "OfferDecisionResponse",
    "OfferResponse",
    "PayoutAccountRequest",
    "PayoutAccountResponse",
    "RefundEscrowRequest",
    "ReleaseEscrowRequest",
    "RespondToOfferRequest",
]
