from .actors import ActorCapability, ActorContext, resolve_actor
from .errors import (
    AffiliationError,
    Conflict,
    Expired,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from .matching import AffiliationPolicy, MatchResult
from .store import AffiliationStore

__all__ = [
    "ActorCapability",
    "ActorContext",
    "resolve_actor",
    "AffiliationError",
    "Conflict",
    "Expired",
    "Forbidden",
    "InvalidState",
    "NotFound",
    "ValidationFailed",
    "AffiliationPolicy",
    "MatchResult",
    "AffiliationStore",
]
