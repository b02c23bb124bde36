"""Lazy expiry of time-boxed proposals.

Nothing runs on a timer: collections are swept right before they are served
and single proposals are checked at the moment they are used. Each sweep is a
single guarded UPDATE, so running it twice changes nothing the second time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import UUID

from .lifecycle import PENDING, InviteStatus, OfferStatus, ProposalKind
from .store import AffiliationStore

logger = logging.getLogger(__name__)

_EXPIRING_KINDS = (ProposalKind.INVITE, ProposalKind.RECRUITMENT_OFFER)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_overdue(proposal: Mapping[str, Any], now: datetime) -> bool:
    """True when a still-pending proposal has passed its ``expires_at``."""
    expires_at = proposal.get("expires_at")
    if proposal.get("status") != PENDING or expires_at is None:
        return False
    return expires_at < now


def effective_status(proposal: Mapping[str, Any], now: datetime) -> str:
    if is_overdue(proposal, now):
        return OfferStatus.EXPIRED.value
    return proposal["status"]


async def sweep_offers(
    store: AffiliationStore,
    *,
    now: datetime,
    agency_id: Optional[UUID] = None,
    broker_id: Optional[UUID] = None,
) -> list[UUID]:
    expired = await store.expire_offers(now, agency_id=agency_id, broker_id=broker_id)
    if expired:
        logger.info(
            "[Expiry] Marked %d recruitment offer(s) expired (agency=%s broker=%s)",
            len(expired),
            agency_id,
            broker_id,
        )
    return expired


async def sweep_invites(
    store: AffiliationStore,
    *,
    now: datetime,
    agency_id: Optional[UUID] = None,
) -> list[UUID]:
    expired = await store.expire_invites(now, agency_id=agency_id)
    if expired:
        logger.info("[Expiry] Marked %d invite(s) expired (agency=%s)", len(expired), agency_id)
    return expired


async def expire_if_due(
    store: AffiliationStore,
    kind: ProposalKind,
    proposal: Mapping[str, Any],
    *,
    now: datetime,
) -> bool:
    """Persist expiry for one proposal at use time. Returns True if it is expired."""
    if kind not in _EXPIRING_KINDS:
        return False
    if proposal.get("status") == InviteStatus.EXPIRED.value:
        return True
    if not is_overdue(proposal, now):
        return False

    if kind == ProposalKind.INVITE:
        await store.expire_invites(now, invite_id=proposal["id"])
    else:
        await store.expire_offers(now, offer_id=proposal["id"])
    logger.info("[Expiry] %s %s expired at use time", kind.value, proposal["id"])
    return True
