"""API endpoints module."""

from fastapi import APIRouter

from cabbagesync.api.calendar_events import router as calendar_events_router
from cabbagesync.api.server_info import router as server_info_router

api_router = APIRouter(prefix="/api")

api_router.include_router(calendar_events_router)
api_router.include_router(server_info_router)

__all__ = ["api_router"]
