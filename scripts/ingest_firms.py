#!/usr/bin/env python3
"""
scripts/ingest_firms.py

Run one NASA FIRMS ingestion cycle, the way a scheduler (cron, Cloud
Scheduler) would. Exit code 0 on success, 1 on failure.

Uses the same .env / environment as the API. Without Supabase credentials
the cycle runs against the in-memory demo store, which is only useful for
checking the feed.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from app.core.errors import FeedFetchError, StoreError
from app.core.settings import settings
from app.services.firms import FirmsClient
from app.services.ingestion import FirmsIngestion
from app.services.store import DemoStore, EventStore, SupaStore


def build_store() -> EventStore:
    if settings.store_configured:
        return SupaStore(
            url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            timeout_s=settings.supabase_timeout_s,
        )
    logging.getLogger(__name__).warning("[ingest] Supabase not configured - writing to the demo store")
    return DemoStore()


async def run(args: argparse.Namespace) -> int:
    client = FirmsClient(
        api_key=settings.firms_api_key if settings.firms_configured else "",
        base_url=settings.firms_base_url,
        source=args.source,
        area=args.area,
        days=args.days,
        timeout_s=settings.firms_timeout_s,
    )
    job = FirmsIngestion(
        client=client,
        store=build_store(),
        deterministic_ids=args.deterministic_ids or settings.firms_deterministic_ids,
    )
    return await job.run()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest NASA FIRMS fire detections into the event store")
    parser.add_argument("--source", default=settings.firms_source, help="FIRMS product, e.g. VIIRS_SNPP_NRT")
    parser.add_argument("--area", default=settings.firms_area, help="Country code, e.g. IND")
    parser.add_argument("--days", type=int, default=settings.firms_days, help="Day range (1-10)")
    parser.add_argument(
        "--deterministic-ids",
        action="store_true",
        help="Derive event ids from detection fields so re-runs skip known rows",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        count = asyncio.run(run(args))
    except (FeedFetchError, StoreError) as e:
        print(f"ingestion failed: {e}", file=sys.stderr)
        return 1

    print(f"ingested {count} events")
    return 0


if __name__ == "__main__":
    sys.exit(main())
