"""Matching engine for agency affiliation proposals.

Three channels can link a broker to an agency: email invites, broker join
requests and agency recruitment offers. Every entry point here runs as one
transaction that first locks the broker row, so two requests touching the
same broker (from either side) are serialized and the second one observes
whatever the first committed. A new proposal that finds a pending
counterpart for the same pair resolves both immediately instead of creating
a second pending row.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional
from uuid import UUID

from .actors import ActorContext
from .errors import Conflict, Expired, Forbidden, InvalidState, NotFound, ValidationFailed
from .events import AffiliationEvent, EventType
from .expiry import expire_if_due, utcnow
from .lifecycle import PENDING, JoinRequestStatus, OfferStatus, ProposalKind
from .mutator import AffiliationChange, affiliate, transition_proposal, unaffiliate
from .store import AffiliationStore

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

CASCADE_OFFER_ACCEPT = "offer_accept"
CASCADE_ALL = "all"


@dataclass(frozen=True)
class AffiliationPolicy:
    offer_ttl: timedelta = timedelta(days=14)
    invite_ttl: timedelta = timedelta(days=7)
    cascade_scope: str = CASCADE_OFFER_ACCEPT
    invite_base_url: str = ""

    @classmethod
    def from_settings(cls, settings) -> "AffiliationPolicy":
        return cls(
            offer_ttl=timedelta(days=settings.offer_expiry_days),
            invite_ttl=timedelta(days=settings.invite_expiry_days),
            cascade_scope=settings.cascade_scope,
            invite_base_url=settings.app_base_url.rstrip("/"),
        )

    def cascade_for(self, kind: ProposalKind, *, explicit_accept: bool) -> bool:
        """Whether affiliating through ``kind`` also closes the broker's other proposals."""
        if self.cascade_scope == CASCADE_ALL:
            return True
        return kind == ProposalKind.RECRUITMENT_OFFER and explicit_accept


DEFAULT_POLICY = AffiliationPolicy()


@dataclass
class MatchResult:
    outcome: str
    message: str
    agency_id: UUID
    broker_id: Optional[UUID] = None
    proposal: Optional[Row] = None
    broker: Optional[Row] = None
    auto_approved: bool = False
    auto_accepted: bool = False
    rejected_request_ids: list[UUID] = field(default_factory=list)
    declined_offer_ids: list[UUID] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    events: list[AffiliationEvent] = field(default_factory=list)

    @property
    def affiliated(self) -> bool:
        return self.outcome in {"auto_approved", "auto_accepted", "approved", "accepted"}


def default_offer_message(agency: Row) -> str:
    return f"{agency['name']} would like you to join their team"


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise ValidationFailed("A valid email address is required", reason="invalid_email")
    return normalized


def _clean_message(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message.strip() or None


async def _require_agency(store: AffiliationStore, agency_id: UUID) -> Row:
    agency = await store.get_agency(agency_id)
    if agency is None:
        raise NotFound("Agency not found", reason="agency_not_found")
    return agency


async def _lock_broker(store: AffiliationStore, broker_id: UUID) -> Row:
    broker = await store.lock_broker(broker_id)
    if broker is None:
        raise NotFound("Broker not found", reason="broker_not_found")
    return broker


def _require_unaffiliated(broker: Row, *, own: bool) -> None:
    if broker["agency_id"] is not None:
        message = "You are already part of an agency" if own else "This broker is already part of an agency"
        raise Conflict(message, reason="broker_already_affiliated")


def _cascade_events(broker_id: UUID, change: AffiliationChange) -> list[AffiliationEvent]:
    """Notices for proposals the cascade closed, addressed to the agency that owned each one."""
    return [
        AffiliationEvent(
            EventType.JOIN_REQUEST_REJECTED,
            agency_id=row["agency_id"],
            broker_id=broker_id,
            proposal_id=row["id"],
            payload={"cascade": True},
        )
        for row in change.rejected_requests
    ] + [
        AffiliationEvent(
            EventType.OFFER_DECLINED,
            agency_id=row["agency_id"],
            broker_id=broker_id,
            proposal_id=row["id"],
            payload={"cascade": True},
        )
        for row in change.declined_offers
    ]


# ─── Agency-initiated recruitment offers ─────────────────────


async def create_recruitment_offer(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    broker_id: UUID,
    message: Optional[str] = None,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    agency = await _require_agency(store, agency_id)
    actor.require_agency_owner(agency_id, action="send recruitment offers")

    async with store.transaction():
        broker = await _lock_broker(store, broker_id)
        _require_unaffiliated(broker, own=False)
        if await store.is_agency_owner(broker["user_id"]):
            raise Conflict("Cannot recruit an agency owner", reason="owner_not_recruitable")

        existing_offer = await store.find_pending_offer(agency_id, broker_id)
        if existing_offer is not None and await expire_if_due(
            store, ProposalKind.RECRUITMENT_OFFER, existing_offer, now=now
        ):
            existing_offer = None
        if existing_offer is not None:
            raise Conflict("A recruitment offer is already pending for this broker", reason="duplicate_offer")

        pending_request = await store.find_pending_join_request(agency_id, broker_id)
        if pending_request is not None:
            change = await affiliate(
                store,
                broker,
                agency_id,
                kind=ProposalKind.JOIN_REQUEST,
                proposal=pending_request,
                now=now,
                cascade=policy.cascade_for(ProposalKind.JOIN_REQUEST, explicit_accept=False),
            )
            result = MatchResult(
                outcome="auto_approved",
                message="Broker had already requested to join. They have been added to your agency.",
                agency_id=agency_id,
                broker_id=broker_id,
                proposal=change.proposal,
                broker=change.broker,
                auto_approved=True,
                rejected_request_ids=change.rejected_request_ids,
                declined_offer_ids=change.declined_offer_ids,
            )
            result.events.append(
                AffiliationEvent(
                    EventType.JOIN_REQUEST_AUTO_APPROVED,
                    agency_id=agency_id,
                    broker_id=broker_id,
                    proposal_id=pending_request["id"],
                    payload={"agency_name": agency["name"]},
                )
            )
            result.events.extend(_cascade_events(broker_id, change))
            return result

        offer = await store.insert_offer(
            agency_id,
            broker_id,
            message=_clean_message(message) or default_offer_message(agency),
            created_at=now,
            expires_at=now + policy.offer_ttl,
        )

    logger.info("[Affiliation] Agency %s sent recruitment offer %s to broker %s", agency_id, offer["id"], broker_id)
    return MatchResult(
        outcome="created",
        message="Recruitment offer sent",
        agency_id=agency_id,
        broker_id=broker_id,
        proposal=offer,
        broker=broker,
        events=[
            AffiliationEvent(
                EventType.OFFER_CREATED,
                agency_id=agency_id,
                broker_id=broker_id,
                proposal_id=offer["id"],
                payload={"agency_name": agency["name"], "expires_at": offer["expires_at"]},
            )
        ],
    )


async def withdraw_offer(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    offer_id: UUID,
) -> MatchResult:
    await _require_agency(store, agency_id)
    actor.require_agency_owner(agency_id, action="withdraw offers")

    async with store.transaction():
        offer = await store.get_offer(offer_id)
        if offer is None or offer["agency_id"] != agency_id:
            raise NotFound("Offer not found", reason="offer_not_found")
        await _lock_broker(store, offer["broker_id"])
        if offer["status"] != PENDING or not await store.delete_pending_offer(offer_id):
            raise InvalidState("Offer is no longer pending", reason="already_decided")

    return MatchResult(
        outcome="withdrawn",
        message="Offer withdrawn",
        agency_id=agency_id,
        broker_id=offer["broker_id"],
        events=[
            AffiliationEvent(
                EventType.OFFER_WITHDRAWN,
                agency_id=agency_id,
                broker_id=offer["broker_id"],
                proposal_id=offer_id,
            )
        ],
    )


async def respond_to_offer(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    offer_id: UUID,
    accept: bool,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    broker_id = actor.require_broker()

    expired = False
    async with store.transaction():
        broker = await _lock_broker(store, broker_id)
        offer = await store.get_offer(offer_id)
        if offer is None:
            raise NotFound("Offer not found", reason="offer_not_found")
        if offer["broker_id"] != broker_id:
            raise Forbidden("This offer is not for you", reason="not_offer_recipient")

        if await expire_if_due(store, ProposalKind.RECRUITMENT_OFFER, offer, now=now):
            # The expiry write must survive, so leave the block before raising.
            expired = True
        else:
            if offer["status"] != PENDING:
                raise InvalidState("Offer is no longer valid", reason="already_decided")
            # Checked for declines as well as accepts.
            _require_unaffiliated(broker, own=True)
            if accept:
                change = await affiliate(
                    store,
                    broker,
                    offer["agency_id"],
                    kind=ProposalKind.RECRUITMENT_OFFER,
                    proposal=offer,
                    now=now,
                    cascade=policy.cascade_for(ProposalKind.RECRUITMENT_OFFER, explicit_accept=True),
                )
            else:
                declined = await transition_proposal(
                    store,
                    ProposalKind.RECRUITMENT_OFFER,
                    offer,
                    OfferStatus.DECLINED.value,
                    now=now,
                )

    if expired:
        raise Expired("Offer has expired", reason="offer_expired")

    agency_id = offer["agency_id"]
    agency_name = offer.get("agency_name")
    if not accept:
        return MatchResult(
            outcome="declined",
            message="Offer declined",
            agency_id=agency_id,
            broker_id=broker_id,
            proposal=declined,
            broker=broker,
            events=[
                AffiliationEvent(
                    EventType.OFFER_DECLINED,
                    agency_id=agency_id,
                    broker_id=broker_id,
                    proposal_id=offer_id,
                )
            ],
        )

    result = MatchResult(
        outcome="accepted",
        message=f"You have joined {agency_name}" if agency_name else "You have joined the agency",
        agency_id=agency_id,
        broker_id=broker_id,
        proposal=change.proposal,
        broker=change.broker,
        rejected_request_ids=change.rejected_request_ids,
        declined_offer_ids=change.declined_offer_ids,
        extra={"agency_name": agency_name},
    )
    result.events.append(
        AffiliationEvent(
            EventType.OFFER_ACCEPTED,
            agency_id=agency_id,
            broker_id=broker_id,
            proposal_id=offer_id,
        )
    )
    result.events.extend(_cascade_events(broker_id, change))
    return result


# ─── Broker-initiated join requests ──────────────────────────


async def create_join_request(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    message: Optional[str] = None,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    agency = await _require_agency(store, agency_id)
    if actor.is_agency_owner:
        raise Conflict("Agency owners cannot join other agencies", reason="owner_cannot_join")
    broker_id = actor.require_broker()

    async with store.transaction():
        broker = await _lock_broker(store, broker_id)
        _require_unaffiliated(broker, own=True)

        if await store.find_pending_join_request(agency_id, broker_id) is not None:
            raise Conflict(
                "You already have a pending request to this agency",
                reason="duplicate_join_request",
            )

        pending_offer = await store.find_pending_offer(agency_id, broker_id)
        if pending_offer is not None and await expire_if_due(
            store, ProposalKind.RECRUITMENT_OFFER, pending_offer, now=now
        ):
            pending_offer = None

        if pending_offer is not None:
            change = await affiliate(
                store,
                broker,
                agency_id,
                kind=ProposalKind.RECRUITMENT_OFFER,
                proposal=pending_offer,
                now=now,
                cascade=policy.cascade_for(ProposalKind.RECRUITMENT_OFFER, explicit_accept=False),
            )
            result = MatchResult(
                outcome="auto_accepted",
                message="Agency had already sent you an offer. You have been added to the agency.",
                agency_id=agency_id,
                broker_id=broker_id,
                proposal=change.proposal,
                broker=change.broker,
                auto_accepted=True,
                rejected_request_ids=change.rejected_request_ids,
                declined_offer_ids=change.declined_offer_ids,
                extra={"agency_name": agency["name"]},
            )
            result.events.append(
                AffiliationEvent(
                    EventType.OFFER_AUTO_ACCEPTED,
                    agency_id=agency_id,
                    broker_id=broker_id,
                    proposal_id=pending_offer["id"],
                )
            )
            result.events.extend(_cascade_events(broker_id, change))
            return result

        request = await store.insert_join_request(
            agency_id,
            broker_id,
            message=_clean_message(message),
            created_at=now,
        )

    logger.info("[Affiliation] Broker %s requested to join agency %s (%s)", broker_id, agency_id, request["id"])
    return MatchResult(
        outcome="created",
        message="Join request sent",
        agency_id=agency_id,
        broker_id=broker_id,
        proposal=request,
        broker=broker,
        events=[
            AffiliationEvent(
                EventType.JOIN_REQUEST_CREATED,
                agency_id=agency_id,
                broker_id=broker_id,
                proposal_id=request["id"],
                payload={"broker_name": broker["name"]},
            )
        ],
    )


async def decide_join_request(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    request_id: UUID,
    approve: bool,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    await _require_agency(store, agency_id)
    actor.require_agency_owner(agency_id, action="decide requests")

    request = await store.get_join_request(request_id)
    if request is None or request["agency_id"] != agency_id:
        raise NotFound("Request not found", reason="join_request_not_found")

    async with store.transaction():
        broker = await _lock_broker(store, request["broker_id"])
        # Re-read under the broker lock; a concurrent decision may have landed.
        request = await store.get_join_request(request_id)
        if request is None:
            raise NotFound("Request not found", reason="join_request_not_found")
        if request["status"] != PENDING:
            raise InvalidState("Request already processed", reason="already_decided")

        if approve:
            _require_unaffiliated(broker, own=False)
            change = await affiliate(
                store,
                broker,
                agency_id,
                kind=ProposalKind.JOIN_REQUEST,
                proposal=request,
                now=now,
                cascade=policy.cascade_for(ProposalKind.JOIN_REQUEST, explicit_accept=True),
            )
        else:
            rejected = await transition_proposal(
                store,
                ProposalKind.JOIN_REQUEST,
                request,
                JoinRequestStatus.REJECTED.value,
                now=now,
            )

    broker_id = request["broker_id"]
    if not approve:
        return MatchResult(
            outcome="rejected",
            message="Join request rejected",
            agency_id=agency_id,
            broker_id=broker_id,
            proposal=rejected,
            broker=broker,
            events=[
                AffiliationEvent(
                    EventType.JOIN_REQUEST_REJECTED,
                    agency_id=agency_id,
                    broker_id=broker_id,
                    proposal_id=request_id,
                )
            ],
        )

    result = MatchResult(
        outcome="approved",
        message="Join request approved",
        agency_id=agency_id,
        broker_id=broker_id,
        proposal=change.proposal,
        broker=change.broker,
        rejected_request_ids=change.rejected_request_ids,
        declined_offer_ids=change.declined_offer_ids,
    )
    result.events.append(
        AffiliationEvent(
            EventType.JOIN_REQUEST_APPROVED,
            agency_id=agency_id,
            broker_id=broker_id,
            proposal_id=request_id,
        )
    )
    result.events.extend(_cascade_events(broker_id, change))
    return result


async def withdraw_join_request(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    request_id: UUID,
) -> MatchResult:
    broker_id = actor.require_broker()

    async with store.transaction():
        await _lock_broker(store, broker_id)
        request = await store.get_join_request(request_id)
        if request is None or request["broker_id"] != broker_id:
            raise NotFound("Request not found", reason="join_request_not_found")
        if request["status"] != PENDING or not await store.delete_pending_join_request(request_id):
            raise InvalidState("Request is no longer pending", reason="already_decided")

    return MatchResult(
        outcome="withdrawn",
        message="Request withdrawn",
        agency_id=request["agency_id"],
        broker_id=broker_id,
        events=[
            AffiliationEvent(
                EventType.JOIN_REQUEST_WITHDRAWN,
                agency_id=request["agency_id"],
                broker_id=broker_id,
                proposal_id=request_id,
            )
        ],
    )


# ─── Membership ──────────────────────────────────────────────


async def remove_broker_from_agency(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    broker_id: UUID,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    await _require_agency(store, agency_id)
    actor.require_agency_owner(agency_id, action="remove brokers")

    async with store.transaction():
        broker = await store.lock_broker(broker_id)
        if broker is None or broker["agency_id"] != agency_id:
            raise NotFound("Broker not found in this agency", reason="broker_not_in_agency")
        updated = await unaffiliate(store, broker, agency_id, now=now)

    return MatchResult(
        outcome="removed",
        message="Broker removed and converted to individual",
        agency_id=agency_id,
        broker_id=broker_id,
        broker=updated,
        events=[AffiliationEvent(EventType.BROKER_REMOVED, agency_id=agency_id, broker_id=broker_id)],
    )


# ─── Email invites ───────────────────────────────────────────


def invite_url(policy: AffiliationPolicy, code: str) -> str:
    return f"{policy.invite_base_url}/agencies/invites/{code}/accept"


async def create_invite(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    email: str,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    email = normalize_email(email)
    agency = await _require_agency(store, agency_id)
    actor.require_agency_owner(agency_id, action="invite brokers")

    async with store.transaction():
        await store.advisory_lock(f"invite:{agency_id}:{email}")
        existing = await store.find_pending_invite(agency_id, email)
        if existing is not None and await expire_if_due(store, ProposalKind.INVITE, existing, now=now):
            existing = None
        if existing is not None:
            raise Conflict("Invite already sent to this email", reason="duplicate_invite")

        invite = await store.insert_invite(
            agency_id,
            email,
            code=secrets.token_urlsafe(24),
            invited_at=now,
            expires_at=now + policy.invite_ttl,
        )

    url = invite_url(policy, invite["code"])
    logger.info("[Affiliation] Agency %s invited %s (%s)", agency_id, email, invite["id"])
    return MatchResult(
        outcome="created",
        message="Invite sent",
        agency_id=agency_id,
        proposal=invite,
        extra={"invite_url": url},
        events=[
            AffiliationEvent(
                EventType.INVITE_CREATED,
                agency_id=agency_id,
                proposal_id=invite["id"],
                payload={"email": email, "agency_name": agency["name"], "invite_url": url},
            )
        ],
    )


async def accept_invite(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    code: str,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    now = now or utcnow()
    broker_id = actor.require_broker()

    invite = await store.get_invite_by_code(code)
    if invite is None:
        raise NotFound("Invite not found", reason="invite_not_found")

    expired = False
    async with store.transaction():
        broker = await _lock_broker(store, broker_id)
        invite = await store.get_invite_by_code(code)
        if invite is None:
            raise NotFound("Invite not found", reason="invite_not_found")
        if await expire_if_due(store, ProposalKind.INVITE, invite, now=now):
            expired = True
        elif invite["status"] != PENDING:
            raise InvalidState("Invite is no longer valid", reason="already_decided")
        else:
            _require_unaffiliated(broker, own=True)
            if actor.is_agency_owner:
                raise Conflict("Agency owners cannot join other agencies", reason="owner_cannot_join")
            change = await affiliate(
                store,
                broker,
                invite["agency_id"],
                kind=ProposalKind.INVITE,
                proposal=invite,
                now=now,
                cascade=policy.cascade_for(ProposalKind.INVITE, explicit_accept=True),
            )

    if expired:
        raise Expired("Invite has expired", reason="invite_expired")

    agency_id = invite["agency_id"]
    result = MatchResult(
        outcome="accepted",
        message=f"You have joined {invite.get('agency_name') or 'the agency'}",
        agency_id=agency_id,
        broker_id=broker_id,
        proposal=change.proposal,
        broker=change.broker,
        rejected_request_ids=change.rejected_request_ids,
        declined_offer_ids=change.declined_offer_ids,
    )
    result.events.append(
        AffiliationEvent(
            EventType.INVITE_ACCEPTED,
            agency_id=agency_id,
            broker_id=broker_id,
            proposal_id=invite["id"],
        )
    )
    result.events.extend(_cascade_events(broker_id, change))
    return result


async def recruit_by_email(
    store: AffiliationStore,
    actor: ActorContext,
    *,
    agency_id: UUID,
    email: str,
    message: Optional[str] = None,
    policy: AffiliationPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> MatchResult:
    """Recruit whoever owns ``email``: an offer for a known broker, otherwise an invite."""
    email = normalize_email(email)
    await _require_agency(store, agency_id)
    actor.require_agency_owner(agency_id, action="add brokers")

    user = await store.get_user_by_email(email)
    if user is None:
        result = await create_invite(store, actor, agency_id=agency_id, email=email, policy=policy, now=now)
        result.extra["converted_to"] = "invite"
        return result

    if user["broker_id"] is None:
        raise ValidationFailed(
            "Cannot add: this email is registered as a client account, not a broker",
            reason="not_a_broker_account",
        )

    result = await create_recruitment_offer(
        store,
        actor,
        agency_id=agency_id,
        broker_id=user["broker_id"],
        message=message,
        policy=policy,
        now=now,
    )
    result.extra["converted_to"] = "offer"
    return result
