"""API routes for the campus appeals service."""

from fastapi import APIRouter

from .appeals import router as appeals_router
from .notifications import router as notifications_router

# Main API router
api_router = APIRouter()

api_router.include_router(appeals_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
