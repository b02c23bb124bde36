"""Read side of the affiliation engine. Every listing sweeps expiry first."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from .actors import ActorContext
from .errors import NotFound
from .expiry import sweep_invites, sweep_offers, utcnow
from .store import AffiliationStore

Row = Mapping[str, Any]


async def _owned_agency(store: AffiliationStore, actor: ActorContext, agency_id: UUID, action: str) -> Row:
    agency = await store.get_agency(agency_id)
    if agency is None:
        raise NotFound("Agency not found", reason="agency_not_found")
    actor.require_agency_owner(agency_id, action=action)
    return agency


async def list_agency_offers(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    now: Optional[datetime] = None,
) -> list[Row]:
    await _owned_agency(store, actor, agency_id, "view recruitment offers")
    await sweep_offers(store, now=now or utcnow(), agency_id=agency_id)
    return await store.list_offers_for_agency(agency_id)


async def list_agency_join_requests(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
) -> list[Row]:
    await _owned_agency(store, actor, agency_id, "view requests")
    return await store.list_join_requests_for_agency(agency_id)


async def list_agency_invites(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    now: Optional[datetime] = None,
) -> list[Row]:
    await _owned_agency(store, actor, agency_id, "view invites")
    await sweep_invites(store, now=now or utcnow(), agency_id=agency_id)
    return await store.list_invites_for_agency(agency_id)


async def list_agency_members(store: AffiliationStore, *, agency_id: UUID) -> list[Row]:
    if await store.get_agency(agency_id) is None:
        raise NotFound("Agency not found", reason="agency_not_found")
    return await store.list_agency_members(agency_id)


async def list_broker_offers(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    now: Optional[datetime] = None,
) -> list[Row]:
    broker_id = actor.require_broker()
    broker = await store.get_broker(broker_id)
    # Offers are only actionable for individual brokers.
    if broker is None or broker["agency_id"] is not None:
        return []
    await sweep_offers(store, now=now or utcnow(), broker_id=broker_id)
    return await store.list_offers_for_broker(broker_id)


async def list_broker_join_requests(store: AffiliationStore, actor: ActorContext) -> list[Row]:
    broker_id = actor.require_broker()
    broker = await store.get_broker(broker_id)
    if broker is None or broker["agency_id"] is not None:
        return []
    return await store.list_join_requests_for_broker(broker_id)


async def get_agency_overview(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    now: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    """Dashboard summary for the caller's own agency, or None if they own none."""
    if not actor.is_agency_owner or actor.agency_id is None:
        return None

    agency = await store.get_agency(actor.agency_id)
    if agency is None:
        return None

    now = now or utcnow()
    await sweep_offers(store, now=now, agency_id=agency["id"])
    await sweep_invites(store, now=now, agency_id=agency["id"])
    counts = await store.agency_counts(agency["id"])

    return {
        "id": agency["id"],
        "name": agency["name"],
        "broker_count": counts["broker_count"],
        "pending_invites": counts["pending_invites"],
        "pending_requests": counts["pending_requests"],
        "pending_offers": counts["pending_offers"],
    }
