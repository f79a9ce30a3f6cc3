from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pytest

from app.core.contracts import Alert, Event
from app.core.errors import FeedFetchError, StoreError
from app.services.store import DemoStore


VIIRS_HEADER = (
    "country_id,latitude,longitude,bright_ti4,scan,track,acq_date,acq_time,"
    "satellite,instrument,confidence,version,bright_ti5,frp,daynight"
)


def viirs_row(lat, lon, confidence="n", bright_ti4=330.0, acq_time="0812") -> str:
    return f"IND,{lat},{lon},{bright_ti4},0.39,0.36,2024-03-01,{acq_time},N,VIIRS,{confidence},2.0NRT,295.1,12.3,D"


def viirs_csv(*rows: str) -> str:
    return "\n".join([VIIRS_HEADER, *rows]) + "\n"


class FakeFirmsClient:
    """Stands in for FirmsClient: returns canned CSV or raises."""

    source = "VIIRS_SNPP_NRT"
    area = "IND"

    def __init__(self, text: str = "", error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0

    async def fetch_csv(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class RecordingStore(DemoStore):
    """DemoStore that records batch writes and can be told to fail them."""

    def __init__(self, *, fail_events: bool = False, fail_alerts: bool = False, fail_logs: bool = False) -> None:
        super().__init__()
        self.fail_events = fail_events
        self.fail_alerts = fail_alerts
        self.fail_logs = fail_logs
        self.event_batches: List[List[Event]] = []
        self.alert_batches: List[List[Alert]] = []

    async def insert_events(self, events: Sequence[Event], *, ignore_duplicates: bool = False) -> List[Event]:
        self.event_batches.append(list(events))
        if self.fail_events:
            raise StoreError("events insert failed", status_code=500, body="boom")
        return await super().insert_events(events, ignore_duplicates=ignore_duplicates)

    async def insert_alerts(self, alerts: Sequence[Alert]) -> List[Alert]:
        self.alert_batches.append(list(alerts))
        if self.fail_alerts:
            raise StoreError("alerts insert failed", status_code=500, body="boom")
        return await super().insert_alerts(alerts)

    async def log_system(self, *, level: str, service: str, message: str, error_details: Optional[Dict[str, Any]] = None) -> None:
        if self.fail_logs:
            raise StoreError("system_logs insert failed", status_code=500)
        await super().log_system(level=level, service=service, message=message, error_details=error_details)


@pytest.fixture
def demo_store() -> DemoStore:
    return DemoStore()


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def feed_error() -> FeedFetchError:
    return FeedFetchError("FIRMS API error: 503 Service Unavailable")
