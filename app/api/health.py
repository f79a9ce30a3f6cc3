from __future__ import annotations

from fastapi import APIRouter

from app.core.settings import settings
from app.core.time import utc_now_iso

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "time": utc_now_iso()}


@router.get("/ping")
def ping():
    return {"message": settings.ping_message}
