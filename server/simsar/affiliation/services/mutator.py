"""Atomic affiliation transitions.

These helpers must run inside the caller's open transaction, after the
broker row has been locked. The broker update, the triggering proposal's
status change and any cascade updates then commit together; an exception at
any step rolls all of them back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from .errors import Conflict, InvalidState
from .lifecycle import (
    PENDING,
    InviteStatus,
    JoinRequestStatus,
    OfferStatus,
    ProposalKind,
    label_for,
    validate_transition,
)
from .store import AffiliationStore

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

# Status a proposal takes when it is the one that establishes the affiliation.
_AFFILIATING_STATUS = {
    ProposalKind.INVITE: InviteStatus.ACCEPTED.value,
    ProposalKind.JOIN_REQUEST: JoinRequestStatus.APPROVED.value,
    ProposalKind.RECRUITMENT_OFFER: OfferStatus.ACCEPTED.value,
}


@dataclass
class AffiliationChange:
    broker: Row
    proposal: Row
    # Cascade rows carry (id, agency_id) of each proposal closed on the broker's behalf.
    rejected_requests: list[Row] = field(default_factory=list)
    declined_offers: list[Row] = field(default_factory=list)

    @property
    def rejected_request_ids(self) -> list[UUID]:
        return [row["id"] for row in self.rejected_requests]

    @property
    def declined_offer_ids(self) -> list[UUID]:
        return [row["id"] for row in self.declined_offers]


async def transition_proposal(
    store: AffiliationStore,
    kind: ProposalKind,
    proposal: Row,
    status: str,
    *,
    now: datetime,
    broker_id: Optional[UUID] = None,
) -> Row:
    """Move a pending proposal to ``status``; raises InvalidState if it moved first."""
    validate_transition(kind, proposal["status"], status)

    if kind == ProposalKind.RECRUITMENT_OFFER:
        updated = await store.set_offer_status(proposal["id"], status, decided_at=now)
    elif kind == ProposalKind.JOIN_REQUEST:
        updated = await store.set_join_request_status(proposal["id"], status, decided_at=now)
    else:
        updated = await store.mark_invite_accepted(
            proposal["id"],
            broker_id=broker_id,
            accepted_at=now,
        )

    if updated is None:
        raise InvalidState(
            f"{label_for(kind)} is no longer pending",
            reason="already_decided",
        )
    return updated


async def affiliate(
    store: AffiliationStore,
    broker: Row,
    agency_id: UUID,
    *,
    kind: ProposalKind,
    proposal: Row,
    now: datetime,
    cascade: bool = False,
) -> AffiliationChange:
    """Link ``broker`` to ``agency_id`` and close the proposal that authorized it."""
    if broker["agency_id"] is not None:
        raise Conflict("This broker is already part of an agency", reason="broker_already_affiliated")
    if proposal["status"] != PENDING:
        raise InvalidState(f"{label_for(kind)} is no longer pending", reason="already_decided")

    updated_broker = await store.set_broker_affiliation(
        broker["id"],
        agency_id,
        previous_company_name=broker["company_name"],
        now=now,
    )
    if updated_broker is None:
        raise Conflict("This broker is already part of an agency", reason="broker_already_affiliated")

    updated_proposal = await transition_proposal(
        store,
        kind,
        proposal,
        _AFFILIATING_STATUS[kind],
        now=now,
        broker_id=broker["id"],
    )

    change = AffiliationChange(broker=updated_broker, proposal=updated_proposal)
    if cascade:
        change.rejected_requests = await store.reject_other_pending_join_requests(
            broker["id"],
            exclude_id=proposal["id"] if kind == ProposalKind.JOIN_REQUEST else None,
            decided_at=now,
        )
        change.declined_offers = await store.decline_other_pending_offers(
            broker["id"],
            exclude_id=proposal["id"] if kind == ProposalKind.RECRUITMENT_OFFER else None,
            decided_at=now,
        )

    logger.info(
        "[Affiliation] Broker %s affiliated with agency %s via %s %s "
        "(cascade: %d request(s) rejected, %d offer(s) declined)",
        broker["id"],
        agency_id,
        kind.value,
        proposal["id"],
        len(change.rejected_request_ids),
        len(change.declined_offer_ids),
    )
    return change


async def unaffiliate(
    store: AffiliationStore,
    broker: Row,
    agency_id: UUID,
    *,
    now: datetime,
) -> Row:
    """Detach ``broker`` from ``agency_id`` and restore its own company name."""
    updated = await store.clear_broker_affiliation(broker["id"], agency_id, now=now)
    if updated is None:
        raise Conflict("Broker is no longer part of this agency", reason="broker_not_in_agency")
    logger.info("[Affiliation] Broker %s removed from agency %s", broker["id"], agency_id)
    return updated
