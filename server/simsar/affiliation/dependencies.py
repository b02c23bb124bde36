"""Affiliation-specific dependencies."""
from ..config import get_settings
from .services.matching import AffiliationPolicy


def get_affiliation_policy() -> AffiliationPolicy:
    return AffiliationPolicy.from_settings(get_settings())
