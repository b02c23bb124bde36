"""Broker-side views of offers and join requests."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends

from ...core.dependencies import require_broker
from ...core.models.auth import CurrentUser
from ...database import get_connection
from ..models.affiliation import (
    AffiliationResult,
    JoinRequestResponse,
    RecruitmentOfferResponse,
    join_request_from_row,
    offer_from_row,
    result_to_response,
)
from ..services import listings, matching
from ..services.actors import resolve_actor
from ..services.errors import AffiliationError, to_http_exception
from ..services.events import publish_events
from ..services.expiry import utcnow
from ..services.store import AffiliationStore

router = APIRouter()


@router.get("/me/offers", response_model=list[RecruitmentOfferResponse])
async def list_my_offers(current_user: CurrentUser = Depends(require_broker)):
    """Offers addressed to the caller. Empty once they belong to an agency."""
    now = utcnow()
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            rows = await listings.list_broker_offers(store, actor, now=now)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return [offer_from_row(row, now=now) for row in rows]


@router.get("/me/requests", response_model=list[JoinRequestResponse])
async def list_my_requests(current_user: CurrentUser = Depends(require_broker)):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            rows = await listings.list_broker_join_requests(store, actor)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    return [join_request_from_row(row) for row in rows]


@router.delete("/me/requests/{request_id}", response_model=AffiliationResult)
async def withdraw_my_request(
    request_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_broker),
):
    async with get_connection() as conn:
        store = AffiliationStore(conn)
        actor = await resolve_actor(store, current_user.id)
        try:
            result = await matching.withdraw_join_request(store, actor, request_id=request_id)
        except AffiliationError as exc:
            raise to_http_exception(exc) from exc
    background_tasks.add_task(publish_events, result.events)
    return result_to_response(result)
