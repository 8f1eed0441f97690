"""Comment and visibility rules derived from building membership and ownership."""

from __future__ import annotations

import logging
from typing import AbstractSet, Mapping, Protocol, Sequence

from .models import Actor, ActorRole, Ticket

logger = logging.getLogger(__name__)

WILDCARD_BUILDING = "*"


def can_comment(ticket: Ticket, actor: Actor, actor_building_ids: AbstractSet[str]) -> bool:
    """Return whether ``actor`` may post or read comments on ``ticket``.

    Managers need membership of the ticket's building (or the ``"*"`` wildcard);
    residents may only act on tickets they requested. Every other role is denied.
    """

    if actor.role == ActorRole.MANAGER:
        return WILDCARD_BUILDING in actor_building_ids or ticket.building_id in actor_building_ids
    if actor.role == ActorRole.RESIDENT:
        return ticket.requested_by == actor.id
    return False


def can_view(ticket: Ticket, actor: Actor, actor_building_ids: AbstractSet[str]) -> bool:
    return can_comment(ticket, actor, actor_building_ids)


class BuildingMembershipResolver(Protocol):
    """Map an actor to the building ids they may act within."""

    async def get_accessible_building_ids(self, actor: Actor) -> frozenset[str]:
        ...


class StaticBuildingMembershipResolver:
    """Resolve memberships from a configured actor id -> building ids table.

    Managers missing from the table fall back to ``default_manager_buildings``;
    anyone else missing from it has no buildings.
    """

    def __init__(
        self,
        memberships: Mapping[str, Sequence[str]] | None = None,
        *,
        default_manager_buildings: Sequence[str] = (),
    ) -> None:
        self._memberships = {actor_id: frozenset(ids) for actor_id, ids in (memberships or {}).items()}
        self._default_manager_buildings = frozenset(default_manager_buildings)

    async def get_accessible_building_ids(self, actor: Actor) -> frozenset[str]:
        if actor.id in self._memberships:
            return self._memberships[actor.id]
        if actor.role == ActorRole.MANAGER:
            logger.debug("Manager %s has no explicit buildings; using defaults", actor.id)
            return self._default_manager_buildings
        return frozenset()
