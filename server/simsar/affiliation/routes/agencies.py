"""Agency affiliation routes: invites, join requests, recruitment offers, membership."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status

from ...core.dependencies import require_broker
from ...core.models.auth import CurrentUser
from ...database import get_connection
from ..dependencies import get_affiliation_policy
from ..models.affiliation import (
    AffiliationResult,
    AgencyOverview,
    BrokerSummary,
    InviteCreate,
    InviteResponse,
    JoinRequestCreate,
    JoinRequestDecision,
    JoinRequestResponse,
    OfferResponseRequest,
    RecruitByEmailRequest,
    RecruitmentOfferCreate,
    RecruitmentOfferResponse,
    broker_from_row,
    invite_from_row,
    join_request_from_row,
    offer_from_row,
    result_to_response,
)
from ..services import listings, matching
from ..services.actors import resolve_actor
from ..services.errors import AffiliationError, to_http_exception
from ..services.events import publish_events
from ..services.expiry import utcnow
from ..services.matching import AffiliationPolicy, MatchResult
from ..services.store import AffiliationStore

router = APIRouter()


def _finish(result: MatchResult, response: Response, background_tasks: BackgroundTasks) -> AffiliationResult:
    response.status_code = status.HTTP_201_CREATED if result.outcome == "created" else status.HTTP_200_OK
    background_tasks.add_task(publish_events, result.events)
    return result_to_response(result)


# ─── Overview & membership ───────────────────────────────────


@router.get("/me", response_model=Optional[AgencyOverview])
async def get_my_agency(current_user: CurrentUser = Depends(require_broker)):
    """Dashboard counts for the agency the caller owns (null if none)."""
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        overview = await listings.get_agency_overview(store, actor)
    return AgencyOverview(**overview) if overview else None


@router.get("/{agency_id}/brokers", response_model=list[BrokerSummary])
async def list_agency_brokers(agency_id: UUID):
    async with get_connection() as conn:
        try:
            rows = await listings.list_agency_members(AffiliationStore(conn), agency_id=agency_id)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return [broker_from_row(row) for row in rows]


@router.post("/{agency_id}/brokers", response_model=AffiliationResult)
async def recruit_broker_by_email(
    agency_id: UUID,
    request: RecruitByEmailRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    """Send an offer to an existing broker, or an invite if the email is unknown."""
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.recruit_by_email(
                store,
                actor,
                agency_id=agency_id,
                email=request.email,
                message=request.message,
                policy=policy,
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


@router.delete("/{agency_id}/brokers/{broker_id}", response_model=AffiliationResult)
async def remove_broker(
    agency_id: UUID,
    broker_id: UUID,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.remove_broker_from_agency(
                store, actor, agency_id=agency_id, broker_id=broker_id
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


# ─── Invites ─────────────────────────────────────────────────


@router.post("/{agency_id}/invites", response_model=AffiliationResult)
async def create_invite(
    agency_id: UUID,
    request: InviteCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.create_invite(
                store, actor, agency_id=agency_id, email=request.email, policy=policy
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


@router.get("/{agency_id}/invites", response_model=list[InviteResponse])
async def list_invites(agency_id: UUID, current_user: CurrentUser = Depends(require_broker)):
    now = utcnow()
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            rows = await listings.list_agency_invites(store, actor, agency_id=agency_id, now=now)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return [invite_from_row(row, now=now) for row in rows]


@router.post("/invites/{code}/accept", response_model=AffiliationResult)
async def accept_invite(
    code: str,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.accept_invite(store, actor, code=code, policy=policy)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


# ─── Join requests ───────────────────────────────────────────


@router.post("/{agency_id}/join-requests", response_model=AffiliationResult)
async def create_join_request(
    agency_id: UUID,
    request: JoinRequestCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    """Ask to join an agency; joins immediately if the agency already made an offer."""
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.create_join_request(
                store, actor, agency_id=agency_id, message=request.message, policy=policy
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


@router.get("/{agency_id}/join-requests", response_model=list[JoinRequestResponse])
async def list_join_requests(agency_id: UUID, current_user: CurrentUser = Depends(require_broker)):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            rows = await listings.list_agency_join_requests(store, actor, agency_id=agency_id)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return [join_request_from_row(row) for row in rows]


@router.post("/{agency_id}/join-requests/{request_id}/decide", response_model=AffiliationResult)
async def decide_join_request(
    agency_id: UUID,
    request_id: UUID,
    decision: JoinRequestDecision,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.decide_join_request(
                store,
                actor,
                agency_id=agency_id,
                request_id=request_id,
                approve=decision.approved,
                policy=policy,
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


# ─── Recruitment offers ──────────────────────────────────────


@router.post("/{agency_id}/offers/{broker_id}", response_model=AffiliationResult)
async def create_recruitment_offer(
    agency_id: UUID,
    broker_id: UUID,
    request: RecruitmentOfferCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    """Offer a broker a place; approves their pending join request if one exists."""
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.create_recruitment_offer(
                store,
                actor,
                agency_id=agency_id,
                broker_id=broker_id,
                message=request.message,
                policy=policy,
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


@router.delete("/{agency_id}/offers/{offer_id}", response_model=AffiliationResult)
async def withdraw_offer(
    agency_id: UUID,
    offer_id: UUID,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.withdraw_offer(store, actor, agency_id=agency_id, offer_id=offer_id)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)


@router.get("/{agency_id}/offers", response_model=list[RecruitmentOfferResponse])
async def list_recruitment_offers(agency_id: UUID, current_user: CurrentUser = Depends(require_broker)):
    now = utcnow()
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            rows = await listings.list_agency_offers(store, actor, agency_id=agency_id, now=now)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return [offer_from_row(row, now=now) for row in rows]


@router.post("/offers/{offer_id}/respond", response_model=AffiliationResult)
async def respond_to_offer(
    offer_id: UUID,
    request: OfferResponseRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
    policy: AffiliationPolicy = Depends(get_affiliation_policy),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.respond_to_offer(
                store, actor, offer_id=offer_id, accept=request.accept, policy=policy
            )
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return _finish(result, response, background_tasks)
