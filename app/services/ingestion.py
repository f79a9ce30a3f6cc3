from __future__ import annotations

import logging
from typing import List

from app.core.contracts import Alert, AlertStatus, Event, EventType
from app.core.errors import FeedFetchError, StoreError
from app.core.keying import alert_id_for_event, firms_event_id, stable_firms_event_id
from app.core.regions import region_for_point
from app.core.time import utc_now_iso
from app.services.firms import Detection, FirmsClient, confidence_score, parse_firms_csv
from app.services.severity import classify_severity
from app.services.store import EventStore

logger = logging.getLogger(__name__)

ALERT_CONFIDENCE_THRESHOLD = 0.85
FIRMS_SOURCE = "firms"


class FirmsIngestion:
    """
    One FIRMS ingestion cycle: fetch -> parse -> resolve -> persist events
    -> derive alerts for high-confidence detections.

    Not safe to run concurrently with itself; callers serialize cycles.
    """

    def __init__(self, *, client: FirmsClient, store: EventStore, deterministic_ids: bool = False) -> None:
        self.client = client
        self.store = store
        self.deterministic_ids = deterministic_ids

    def _event_id(self, det: Detection) -> str:
        if self.deterministic_ids:
            return stable_firms_event_id(
                satellite=det.satellite,
                acq_date=det.acq_date,
                acq_time=det.acq_time,
                latitude=det.latitude,
                longitude=det.longitude,
            )
        return firms_event_id(det.acq_date, det.acq_time)

    def build_events(self, detections: List[Detection]) -> List[Event]:
        now = utc_now_iso()
        return [
            Event(
                id=self._event_id(det),
                source=FIRMS_SOURCE,
                event_type=EventType.FIRE,
                confidence=confidence_score(det),
                location=region_for_point(det.latitude, det.longitude),
                latitude=det.latitude,
                longitude=det.longitude,
                properties=det.properties(),
                created_at=now,
                updated_at=now,
            )
            for det in detections
        ]

    @staticmethod
    def build_alerts(events: List[Event]) -> List[Alert]:
        now = utc_now_iso()
        return [
            Alert(
                id=alert_id_for_event(e.id),
                event_id=e.id,
                severity=classify_severity(e.event_type, e.confidence),
                status=AlertStatus.OPEN,
                suggested_actions={},
                created_at=now,
                updated_at=now,
            )
            for e in events
            if e.confidence > ALERT_CONFIDENCE_THRESHOLD
        ]

    async def run(self) -> int:
        """Run one cycle. Returns the number of events persisted."""
        try:
            logger.info("[ingest] fetching FIRMS feed (%s/%s)", self.client.source, self.client.area)
            text = await self.client.fetch_csv()

            detections = parse_firms_csv(text)
            logger.info("[ingest] found %d fire detections", len(detections))
            if not detections:
                logger.info("[ingest] no new detections to ingest")
                return 0

            events = self.build_events(detections)
            stored = await self.store.insert_events(events, ignore_duplicates=self.deterministic_ids)
            logger.info("[ingest] ingested %d events", len(stored))
        except (FeedFetchError, StoreError) as e:
            logger.exception("[ingest] ingestion failed")
            await self._record_failure(e)
            raise

        alerts = self.build_alerts(stored)
        if alerts:
            try:
                await self.store.insert_alerts(alerts)
                logger.info("[ingest] created %d alerts", len(alerts))
            except StoreError:
                logger.exception("[ingest] error creating alerts")

        return len(stored)

    async def _record_failure(self, err: Exception) -> None:
        try:
            await self.store.log_system(
                level="error",
                service="firms_ingestion",
                message="FIRMS ingestion failed",
                error_details={"error": str(err), "kind": type(err).__name__},
            )
        except StoreError as log_err:
            logger.warning("[ingest] could not write system log: %s", log_err)
