# app/main.py
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

# Load /backend/.env (main.py is /backend/app/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from app.core.settings import settings
from app.core.errors import StoreError
from app.api import api_router

from app.services.action_plan import ActionPlanGenerator
from app.services.alerts import Alerts
from app.services.firms import FirmsClient
from app.services.ingestion import FirmsIngestion
from app.services.realtime import DemoEventGenerator, RealtimeFeed, SupabaseRealtimeChannel
from app.services.store import DemoStore, EventStore, SupaStore

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rakshak Backend", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────
# Services
# ──────────────────────────────────────────────────────────────

# Store: Supabase when credentials are real, demo dataset otherwise
if settings.store_configured:
    _store: EventStore = SupaStore(
        url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        timeout_s=settings.supabase_timeout_s,
    )
else:
    logger.warning("[app] Supabase not configured - serving the demo dataset")
    _store = DemoStore()

if not settings.firms_configured:
    logger.warning("[app] NASA_FIRMS_API_KEY not set - FIRMS ingestion will fail until it is")

if not settings.llm_configured:
    logger.warning("[app] OPENAI_API_KEY not set - action plans use the built-in templates")

_planner = ActionPlanGenerator(
    api_key=settings.openai_api_key if settings.llm_configured else "",
    model=settings.openai_model,
    base_url=settings.openai_base_url,
    timeout_s=settings.action_plan_timeout_s,
    max_tokens=settings.action_plan_max_tokens,
)

_firms = FirmsClient(
    api_key=settings.firms_api_key if settings.firms_configured else "",
    base_url=settings.firms_base_url,
    source=settings.firms_source,
    area=settings.firms_area,
    days=settings.firms_days,
    timeout_s=settings.firms_timeout_s,
)

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

def provide_store() -> EventStore:
    return _store


def provide_settings():
    return settings


def provide_alerts_service() -> Alerts:
    return Alerts(store=_store, planner=_planner)


def provide_firms_ingestion() -> FirmsIngestion:
    return FirmsIngestion(
        client=_firms,
        store=_store,
        deterministic_ids=settings.firms_deterministic_ids,
    )


def _live_channel() -> SupabaseRealtimeChannel:
    return SupabaseRealtimeChannel(
        url=settings.supabase_url,
        api_key=settings.supabase_anon_key,
        join_timeout_s=settings.realtime_join_timeout_s,
    )


def provide_feed_factory():
    def make_feed(table, callback, *, on_mode=None) -> RealtimeFeed:
        return RealtimeFeed(
            table,
            callback,
            channel_factory=_live_channel if settings.realtime_configured else None,
            generator=DemoEventGenerator(interval_s=settings.realtime_demo_interval_s),
            max_retries=settings.realtime_max_retries,
            backoff_base_s=settings.realtime_backoff_base_s,
            on_mode=on_mode,
        )

    return make_feed


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from app.api import alerts as alerts_api
from app.api import events as events_api
from app.api import ingestion as ingestion_api
from app.api import realtime as realtime_api

# Store
app.dependency_overrides[events_api.get_store] = provide_store
app.dependency_overrides[alerts_api.get_store] = provide_store

# Alerts
app.dependency_overrides[alerts_api.get_alerts_service] = provide_alerts_service

# Ingestion
app.dependency_overrides[ingestion_api.get_firms_ingestion] = provide_firms_ingestion
app.dependency_overrides[ingestion_api.get_settings] = provide_settings

# Realtime
app.dependency_overrides[realtime_api.get_feed_factory] = provide_feed_factory

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Error handlers
# ──────────────────────────────────────────────────────────────

@app.exception_handler(RequestValidationError)
async def on_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "validation_failed",
                "message": "Request body or parameters failed validation",
                "errors": jsonable_encoder([{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]),
            }
        },
    )


@app.exception_handler(StoreError)
async def on_store_error(request: Request, exc: StoreError):
    logger.error("[app] store error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(Exception)
async def on_unhandled(request: Request, exc: Exception):
    logger.error("[app] unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
