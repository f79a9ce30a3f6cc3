from __future__ import annotations

from fastapi import APIRouter

from .health import router as health_router
from .events import router as events_router
from .alerts import router as alerts_router
from .ingestion import router as ingestion_router
from .realtime import router as realtime_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(events_router)
api_router.include_router(alerts_router)
api_router.include_router(ingestion_router)
api_router.include_router(realtime_router)
