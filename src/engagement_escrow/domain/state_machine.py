"""State machine guards for every lifecycle in the settlement flow.

Uses python-statemachine to enforce legal transitions at the domain level.
Services instantiate a machine at the entity's current status, fire the named
event, and only then write the resulting status. An illegal transition
(e.g. pending -> released) raises TransitionNotAllowed before anything moves.

Offer:
    pending    -> accepted | declined | countered
    countered  -> accepted | declined | countered
    countered  -> expired                          (lapse, evaluated lazily)

Engagement:
    staged -> interviewing -> accepted -> active -> in_progress
    in_progress <-> paused
    active | in_progress -> completed
    in_progress | paused -> terminated
    active | in_progress | paused -> cancelled
    any non-terminal -> disputed
    disputed -> recorded prior status | terminated | cancelled

EscrowPayment:
    pending -> held -> released | refunded

Dispute:
    open -> under_review -> resolved -> closed
    open -> resolved, open | under_review -> closed

Milestone:
    pending -> in_progress -> completed, pending -> completed
"""

from __future__ import annotations

from statemachine import State, StateMachine


class StatusGuardMixin:
    """Start a machine at a stored status string and report it back."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value (matches the entity's status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class OfferStateMachine(StatusGuardMixin, StateMachine):
    PENDING = State("Pending", value="pending", initial=True)
    COUNTERED = State("Countered", value="countered")
    ACCEPTED = State("Accepted", value="accepted", final=True)
    DECLINED = State("Declined", value="declined", final=True)
    EXPIRED = State("Expired", value="expired", final=True)

    accept = PENDING.to(ACCEPTED) | COUNTERED.to(ACCEPTED)
    decline = PENDING.to(DECLINED) | COUNTERED.to(DECLINED)
    counter = PENDING.to(COUNTERED) | COUNTERED.to.itself()
    lapse = COUNTERED.to(EXPIRED)


def _restoring(prior: str):
    def guard(prior_status: str | None = None) -> bool:
        return prior_status == prior

    guard.__name__ = f"restoring_{prior}"
    return guard


class EngagementStateMachine(StatusGuardMixin, StateMachine):
    STAGED = State("Staged", value="staged", initial=True)
    INTERVIEWING = State("Interviewing", value="interviewing")
    ACCEPTED = State("Accepted", value="accepted")
    ACTIVE = State("Active", value="active")
    IN_PROGRESS = State("In progress", value="in_progress")
    PAUSED = State("Paused", value="paused")
    DISPUTED = State("Disputed", value="disputed")
    COMPLETED = State("Completed", value="completed", final=True)
    TERMINATED = State("Terminated", value="terminated", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    # Pre-work pipeline
    schedule_interview = STAGED.to(INTERVIEWING)
    accept_candidate = INTERVIEWING.to(ACCEPTED)
    activate = ACCEPTED.to(ACTIVE)

    # Work
    begin_work = ACTIVE.to(IN_PROGRESS)
    pause_work = IN_PROGRESS.to(PAUSED)
    resume_work = PAUSED.to(IN_PROGRESS)
    complete = IN_PROGRESS.to(COMPLETED) | ACTIVE.to(COMPLETED)
    terminate = IN_PROGRESS.to(TERMINATED) | PAUSED.to(TERMINATED)
    cancel = ACTIVE.to(CANCELLED) | IN_PROGRESS.to(CANCELLED) | PAUSED.to(CANCELLED)

    # Dispute freeze
    open_dispute = (
        STAGED.to(DISPUTED)
        | INTERVIEWING.to(DISPUTED)
        | ACCEPTED.to(DISPUTED)
        | ACTIVE.to(DISPUTED)
        | IN_PROGRESS.to(DISPUTED)
        | PAUSED.to(DISPUTED)
    )
    restore_after_dispute = (
        DISPUTED.to(STAGED, cond=_restoring("staged"))
        | DISPUTED.to(INTERVIEWING, cond=_restoring("interviewing"))
        | DISPUTED.to(ACCEPTED, cond=_restoring("accepted"))
        | DISPUTED.to(ACTIVE, cond=_restoring("active"))
        | DISPUTED.to(IN_PROGRESS, cond=_restoring("in_progress"))
        | DISPUTED.to(PAUSED, cond=_restoring("paused"))
    )
    terminate_after_dispute = DISPUTED.to(TERMINATED)
    cancel_after_dispute = DISPUTED.to(CANCELLED)


class EscrowStateMachine(StatusGuardMixin, StateMachine):
    PENDING = State("Pending", value="pending", initial=True)
    HELD = State("Held", value="held")
    RELEASED = State("Released", value="released", final=True)
    REFUNDED = State("Refunded", value="refunded", final=True)

    capture_confirmed = PENDING.to(HELD)
    release = HELD.to(RELEASED)
    refund = HELD.to(REFUNDED)


class DisputeStateMachine(StatusGuardMixin, StateMachine):
    OPEN = State("Open", value="open", initial=True)
    UNDER_REVIEW = State("Under review", value="under_review")
    RESOLVED = State("Resolved", value="resolved")
    CLOSED = State("Closed", value="closed", final=True)

    begin_review = OPEN.to(UNDER_REVIEW)
    resolve = OPEN.to(RESOLVED) | UNDER_REVIEW.to(RESOLVED)
    close = OPEN.to(CLOSED) | UNDER_REVIEW.to(CLOSED) | RESOLVED.to(CLOSED)


class MilestoneStateMachine(StatusGuardMixin, StateMachine):
    PENDING = State("Pending", value="pending", initial=True)
    IN_PROGRESS = State("In progress", value="in_progress")
    COMPLETED = State("Completed", value="completed", final=True)

    start_milestone = PENDING.to(IN_PROGRESS)
    complete_milestone = PENDING.to(COMPLETED) | IN_PROGRESS.to(COMPLETED)


def validate_transition(
    machine_cls: type[StatusGuardMixin],
    current_status: str,
    event_name: str,
    **event_kwargs: object,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine at current_status, fires the named
    event, and returns the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method(**event_kwargs)
    return sm.status
