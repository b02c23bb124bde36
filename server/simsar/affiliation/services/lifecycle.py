"""Proposal kinds, statuses and the allowed status transitions."""

from __future__ import annotations

from enum import Enum

from .errors import InvalidState


class ProposalKind(str, Enum):
    INVITE = "invite"
    JOIN_REQUEST = "join_request"
    RECRUITMENT_OFFER = "recruitment_offer"


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


PENDING = "pending"

_STATUS_ENUMS: dict[ProposalKind, type[Enum]] = {
    ProposalKind.INVITE: InviteStatus,
    ProposalKind.JOIN_REQUEST: JoinRequestStatus,
    ProposalKind.RECRUITMENT_OFFER: OfferStatus,
}

# Only pending proposals move; every decided or expired status is terminal.
_ALLOWED_TRANSITIONS: dict[ProposalKind, dict[str, tuple[str, ...]]] = {
    ProposalKind.INVITE: {
        InviteStatus.PENDING.value: (InviteStatus.ACCEPTED.value, InviteStatus.EXPIRED.value),
        InviteStatus.ACCEPTED.value: (),
        InviteStatus.EXPIRED.value: (),
    },
    ProposalKind.JOIN_REQUEST: {
        JoinRequestStatus.PENDING.value: (
            JoinRequestStatus.APPROVED.value,
            JoinRequestStatus.REJECTED.value,
        ),
        JoinRequestStatus.APPROVED.value: (),
        JoinRequestStatus.REJECTED.value: (),
    },
    ProposalKind.RECRUITMENT_OFFER: {
        OfferStatus.PENDING.value: (
            OfferStatus.ACCEPTED.value,
            OfferStatus.DECLINED.value,
            OfferStatus.EXPIRED.value,
        ),
        OfferStatus.ACCEPTED.value: (),
        OfferStatus.DECLINED.value: (),
        OfferStatus.EXPIRED.value: (),
    },
}

_LABELS = {
    ProposalKind.INVITE: "Invite",
    ProposalKind.JOIN_REQUEST: "Join request",
    ProposalKind.RECRUITMENT_OFFER: "Offer",
}


def _coerce_status(kind: ProposalKind, value: str | Enum) -> str:
    raw = value.value if isinstance(value, Enum) else value
    try:
        return _STATUS_ENUMS[kind](raw).value
    except ValueError as exc:
        raise InvalidState(
            f"Unknown {kind.value} status '{raw}'",
            reason="unknown_status",
        ) from exc


def label_for(kind: ProposalKind) -> str:
    return _LABELS[kind]


def is_terminal(kind: ProposalKind, status: str | Enum) -> bool:
    return not _ALLOWED_TRANSITIONS[kind][_coerce_status(kind, status)]


def can_transition(kind: ProposalKind, status_from: str | Enum, status_to: str | Enum) -> bool:
    source = _coerce_status(kind, status_from)
    target = _coerce_status(kind, status_to)
    return target in _ALLOWED_TRANSITIONS[kind][source]


def validate_transition(kind: ProposalKind, status_from: str | Enum, status_to: str | Enum) -> None:
    source = _coerce_status(kind, status_from)
    target = _coerce_status(kind, status_to)
    if target in _ALLOWED_TRANSITIONS[kind][source]:
        return
    if source != PENDING:
        raise InvalidState(
            f"{label_for(kind)} is no longer pending (status '{source}')",
            reason="already_decided",
        )
    raise InvalidState(
        f"Invalid {kind.value} transition '{source}' -> '{target}'",
        reason="invalid_transition",
    )


def state_machine_map() -> dict[str, dict[str, list[str]]]:
    return {
        kind.value: {source: list(targets) for source, targets in table.items()}
        for kind, table in _ALLOWED_TRANSITIONS.items()
    }
