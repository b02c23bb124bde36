"""Actor capabilities resolved once per call from the authenticated user."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from .errors import Forbidden, NotFound
from .store import AffiliationStore


class ActorCapability(str, Enum):
    BROKER_OWNER = "broker_owner"
    AGENCY_OWNER = "agency_owner"


@dataclass(frozen=True)
class ActorContext:
    user_id: UUID
    capabilities: frozenset[ActorCapability]
    broker_id: Optional[UUID] = None
    agency_id: Optional[UUID] = None

    def has(self, capability: ActorCapability) -> bool:
        return capability in self.capabilities

    @property
    def is_agency_owner(self) -> bool:
        return self.has(ActorCapability.AGENCY_OWNER)

    def require_broker(self) -> UUID:
        if not self.has(ActorCapability.BROKER_OWNER) or self.broker_id is None:
            raise NotFound("You must have a broker profile", reason="broker_profile_missing")
        return self.broker_id

    def require_agency_owner(self, agency_id: UUID, *, action: str = "manage this agency") -> None:
        if not self.is_agency_owner or self.agency_id != agency_id:
            raise Forbidden(f"Only the agency owner can {action}", reason="not_agency_owner")


async def resolve_actor(store: AffiliationStore, user_id: UUID) -> ActorContext:
    broker = await store.get_broker_by_user(user_id)
    agency = await store.get_agency_by_owner(user_id)

    capabilities = set()
    if broker is not None:
        capabilities.add(ActorCapability.BROKER_OWNER)
    if agency is not None:
        capabilities.add(ActorCapability.AGENCY_OWNER)

    return ActorContext(
        user_id=user_id,
        capabilities=frozenset(capabilities),
        broker_id=broker["id"] if broker is not None else None,
        agency_id=agency["id"] if agency is not None else None,
    )
