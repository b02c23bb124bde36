"""Affiliation routes aggregation."""

from fastapi import APIRouter

from .agencies import router as agencies_router
from .brokers import router as brokers_router

affiliation_router = APIRouter()

affiliation_router.include_router(agencies_router, prefix="/agencies", tags=["agencies"])
affiliation_router.include_router(brokers_router, prefix="/brokers", tags=["brokers"])

__all__ = ["affiliation_router", "agencies_router", "brokers_router"]
