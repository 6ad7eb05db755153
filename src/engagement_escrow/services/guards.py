"""Checks shared by every service before a status write."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from engagement_escrow.domain.exceptions import (
    DisputeOpenError,
    EntityNotFoundError,
    ForbiddenError,
    InputValidationError,
    InvalidStateTransitionError,
)
from engagement_escrow.domain.state_machine import validate_transition

if TYPE_CHECKING:
    import uuid

    from engagement_escrow.domain.actors import Actor
    from engagement_escrow.domain.state_machine import StatusGuardMixin
    from engagement_escrow.infrastructure.database.orm_models import Engagement
    from engagement_escrow.infrastructure.database.repositories import (
        DisputeRepository,
        _Repository,
    )


def fire_transition(
    machine_cls: type[StatusGuardMixin],
    entity: str,
    current_status: str,
    event_name: str,
    **event_kwargs: Any,
) -> str:
    """Return the status `event_name` leads to, or raise InvalidStateTransitionError."""
    try:
        return validate_transition(machine_cls, current_status, event_name, **event_kwargs)
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(entity, current_status, event_name) from err


async def get_or_raise(repo: _Repository, entity_id: uuid.UUID) -> Any:
    entity = await repo.get_by_id(entity_id)
    if entity is None:
        raise EntityNotFoundError(repo.entity_name, entity_id)
    return entity


async def ensure_not_frozen(disputes: DisputeRepository, engagement_id: uuid.UUID) -> None:
    """Refuse ordinary transitions while a dispute is open or under review."""
    dispute = await disputes.get_blocking_for_engagement(engagement_id)
    if dispute is not None:
        raise DisputeOpenError(engagement_id, dispute.id)


def is_seeker_side(actor: Actor, engagement: Engagement) -> bool:
    return actor.is_admin or actor.is_seeker_for(engagement.seeker_company_id)


def is_participant(actor: Actor, engagement: Engagement) -> bool:
    return actor.is_seeker_for(engagement.seeker_company_id) or actor.is_provider(
        engagement.provider_id
    )


def authorize(allowed: bool, message: str) -> None:
    if not allowed:
        raise ForbiddenError(message)


def require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise InputValidationError(f"{field} must not be empty", field=field)
    return value.strip()
