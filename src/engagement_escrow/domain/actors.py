"""Caller identity as seen by the services.

Authentication happens upstream; services only receive an already-verified
Actor and decide whether it may fire a given transition.
"""

from __future__ import annotations

from dataclasses import dataclass

from engagement_escrow.domain.enums import ActorRole, PartyType


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation.

    Attributes:
        id: User or service id.
        role: The role the caller is acting under.
        company_id: Seeker company the caller belongs to, if any.
    """

    id: str
    role: ActorRole
    company_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role is ActorRole.SYSTEM

    def party(self) -> PartyType | None:
        """Negotiating side of this actor. Admins and system are neither."""
        if self.role is ActorRole.SEEKER:
            return PartyType.SEEKER
        if self.role is ActorRole.PROVIDER:
            return PartyType.PROVIDER
        return None

    def is_seeker_for(self, seeker_company_id: str) -> bool:
        return self.role is ActorRole.SEEKER and self.company_id == seeker_company_id

    def is_provider(self, provider_id: str) -> bool:
        return self.role is ActorRole.PROVIDER and self.id == provider_id


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)
