"""Database infrastructure: engine, ORM models, and repositories."""

from engagement_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from engagement_escrow.infrastructure.database.orm_models import (
    Base,
    Dispute,
    Engagement,
    EngagementRequest,
    EscrowPayment,
    Milestone,
    Offer,
    PayoutAccount,
)
from engagement_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EngagementRepository,
    EngagementRequestRepository,
    EscrowPaymentRepository,
    MilestoneRepository,
    OfferRepository,
    PayoutAccountRepository,
)

__all__ = [
    "Base",
    "Dispute",
    "DisputeRepository",
    "Engagement",
    "EngagementRepository",
    "EngagementRequest",
    "EngagementRequestRepository",
    "EscrowPayment",
    "EscrowPaymentRepository",
    "Milestone",
    "MilestoneRepository",
    "Offer",
    "OfferRepository",
    "PayoutAccount",
    "PayoutAccountRepository",
    "close_db",
    "get_async_session",
    "init_db",
]
