"""API router: all JSON endpoints under the /api prefix."""

from fastapi import APIRouter

from .notifications.routes import router as notifications_router
from .reports.routes import router as reports_router

api_router = APIRouter(prefix="/api", tags=["api"])

api_router.include_router(notifications_router)
api_router.include_router(reports_router)
