"""Domain enumerations for the engagement escrow service.

Every status column in the system maps to one of these closed enums.
Legal transitions between their members live in domain/state_machine.py.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class OfferStatus(enum.StrEnum):
    """Lifecycle states of an offer.

    ACCEPTED, DECLINED and EXPIRED are terminal.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COUNTERED = "countered"
    EXPIRED = "expired"


class OfferAction(enum.StrEnum):
    """Responses a counterparty can give to an open offer."""

    ACCEPT = "accept"
    DECLINE = "decline"
    COUNTER = "counter"


class EngagementStatus(enum.StrEnum):
    """Lifecycle states of an engagement.

    COMPLETED, TERMINATED and CANCELLED are terminal.
    DISPUTED is a freeze that remembers the status it interrupted.
    """

    STAGED = "staged"
    INTERVIEWING = "interviewing"
    ACCEPTED = "accepted"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    TERMINATED = "terminated"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class MilestoneStatus(enum.StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow payment.

    RELEASED and REFUNDED are terminal and reached exactly once.
    """

    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class DisputeStatus(enum.StrEnum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeReason(enum.StrEnum):
    PAYMENT = "payment"
    QUALITY = "quality"
    COMMUNICATION = "communication"
    TIMELINE = "timeline"
    OTHER = "other"


class DisputeOutcome(enum.StrEnum):
    """What happens to the engagement when a dispute is resolved."""

    RESTORE = "restore"
    TERMINATE = "terminate"
    CANCEL = "cancel"


class PartyType(enum.StrEnum):
    """The two sides of a negotiation or engagement."""

    SEEKER = "seeker"
    PROVIDER = "provider"


class ActorRole(enum.StrEnum):
    """Roles a caller can act under. Supplied by the upstream auth layer."""

    SEEKER = "seeker"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class NotificationKind(enum.StrEnum):
    """Fire-and-forget notifications emitted after state transitions."""

    OFFER_RECEIVED = "offer_received"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    OFFER_COUNTERED = "offer_countered"
    ENGAGEMENT_STARTED = "engagement_started"
    ENGAGEMENT_COMPLETED = "engagement_completed"
    MILESTONE_REACHED = "milestone_reached"
    PAYMENT_HELD = "payment_held"
    PAYMENT_RELEASED = "payment_released"
    PAYMENT_REFUNDED = "payment_refunded"
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_RESOLVED = "dispute_resolved"


class ProcessorBackend(enum.StrEnum):
    """Payment processor adapters selectable from configuration."""

    SIMULATED = "simulated"
    STRIPE = "stripe"
