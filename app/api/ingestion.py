from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.contracts import IngestionResult, IngestionStatus, IntegrationStatus
from app.core.errors import FeedFetchError, StoreError
from app.core.settings import Settings
from app.core.time import utc_now_iso
from app.services.ingestion import FirmsIngestion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingestion", tags=["ingestion"])


def get_firms_ingestion() -> FirmsIngestion:
    raise RuntimeError("FirmsIngestion must be provided by app dependency override")


def get_settings() -> Settings:
    raise RuntimeError("Settings must be provided by app dependency override")


@router.post("/firms", response_model=IngestionResult)
async def trigger_firms_ingestion(job: FirmsIngestion = Depends(get_firms_ingestion)):
    logger.info("[ingest] triggering FIRMS ingestion")
    try:
        count = await job.run()
    except (FeedFetchError, StoreError) as e:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e), "timestamp": utc_now_iso()},
        )
    return IngestionResult(events_processed=count, timestamp=utc_now_iso())


def _integration(configured: bool, missing: str) -> IntegrationStatus:
    return IntegrationStatus(configured=configured, detail="configured" if configured else f"not configured ({missing})")


@router.get("/status", response_model=IngestionStatus)
def ingestion_status(cfg: Settings = Depends(get_settings)) -> IngestionStatus:
    return IngestionStatus(
        services={
            "firms": _integration(cfg.firms_configured, "no API key"),
            "supabase": _integration(cfg.store_configured, "no URL or service role key"),
            "realtime": _integration(cfg.realtime_configured, "no URL or anon key"),
            "llm": _integration(cfg.llm_configured, "no API key"),
        },
        last_check=utc_now_iso(),
    )
