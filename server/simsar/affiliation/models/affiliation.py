from datetime import datetime
from typing import Any, Literal, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from ..services.expiry import effective_status


InviteStatus = Literal["pending", "accepted", "expired"]
JoinRequestStatus = Literal["pending", "approved", "rejected"]
OfferStatus = Literal["pending", "accepted", "declined", "expired"]
AffiliationType = Literal["individual", "agency_broker"]


# Request bodies
class RecruitmentOfferCreate(BaseModel):
    message: Optional[str] = Field(default=None, max_length=2000)


class RecruitByEmailRequest(BaseModel):
    email: EmailStr
    message: Optional[str] = Field(default=None, max_length=2000)


class JoinRequestCreate(BaseModel):
    message: Optional[str] = Field(default=None, max_length=2000)


class JoinRequestDecision(BaseModel):
    approved: bool


class OfferResponseRequest(BaseModel):
    accept: bool


class InviteCreate(BaseModel):
    email: EmailStr


# Records
class BrokerSummary(BaseModel):
    id: UUID
    name: str
    agency_id: Optional[UUID] = None
    affiliation_type: AffiliationType
    company_name: Optional[str] = None
    previous_company_name: Optional[str] = None


class RecruitmentOfferResponse(BaseModel):
    id: UUID
    agency_id: UUID
    broker_id: UUID
    message: Optional[str] = None
    status: OfferStatus
    created_at: datetime
    expires_at: datetime
    decided_at: Optional[datetime] = None
    agency_name: Optional[str] = None
    broker_name: Optional[str] = None
    broker_company_name: Optional[str] = None


class JoinRequestResponse(BaseModel):
    id: UUID
    agency_id: UUID
    broker_id: UUID
    message: Optional[str] = None
    status: JoinRequestStatus
    created_at: datetime
    decided_at: Optional[datetime] = None
    agency_name: Optional[str] = None
    broker_name: Optional[str] = None
    broker_company_name: Optional[str] = None


class InviteResponse(BaseModel):
    id: UUID
    agency_id: UUID
    email: str
    code: str
    status: InviteStatus
    invited_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None


class AgencyOverview(BaseModel):
    id: UUID
    name: str
    broker_count: int
    pending_invites: int
    pending_requests: int
    pending_offers: int


class AffiliationResult(BaseModel):
    """Outcome of a mutating call.

    ``auto_approved`` / ``auto_accepted`` tell the UI that a counterpart
    proposal was already waiting and the broker is now affiliated.
    """
    outcome: str
    message: str
    agency_id: UUID
    broker_id: Optional[UUID] = None
    affiliated: bool = False
    auto_approved: bool = False
    auto_accepted: bool = False
    proposal: Optional[dict[str, Any]] = None
    broker: Optional[BrokerSummary] = None
    rejected_request_ids: list[UUID] = []
    declined_offer_ids: list[UUID] = []
    invite_url: Optional[str] = None
    converted_to: Optional[Literal["offer", "invite"]] = None


def _row_dict(row: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    return dict(row) if row is not None else None


def offer_from_row(row: Mapping[str, Any], *, now: Optional[datetime] = None) -> RecruitmentOfferResponse:
    data = dict(row)
    if now is not None:
        data["status"] = effective_status(row, now)
    return RecruitmentOfferResponse(**data)


def join_request_from_row(row: Mapping[str, Any]) -> JoinRequestResponse:
    return JoinRequestResponse(**dict(row))


def invite_from_row(row: Mapping[str, Any], *, now: Optional[datetime] = None) -> InviteResponse:
    data = dict(row)
    if now is not None:
        data["status"] = effective_status(row, now)
    return InviteResponse(**data)


def broker_from_row(row: Mapping[str, Any]) -> BrokerSummary:
    return BrokerSummary(**dict(row))


def result_to_response(result) -> AffiliationResult:
    return AffiliationResult(
        outcome=result.outcome,
        message=result.message,
        agency_id=result.agency_id,
        broker_id=result.broker_id,
        affiliated=result.affiliated,
        auto_approved=result.auto_approved,
        auto_accepted=result.auto_accepted,
        proposal=_row_dict(result.proposal),
        broker=broker_from_row(result.broker) if result.broker is not None else None,
        rejected_request_ids=result.rejected_request_ids,
        declined_offer_ids=result.declined_offer_ids,
        invite_url=result.extra.get("invite_url"),
        converted_to=result.extra.get("converted_to"),
    )
