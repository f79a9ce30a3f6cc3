"""
app/services/store.py

Persistence for events, alerts, evidences and system logs.

Two backends:
  - SupaStore: Supabase PostgREST over httpx (service role key, bypasses RLS)
  - DemoStore: in-memory, seeded with the fixed demo dataset; used when
                Supabase credentials are missing so the dashboard still works

Both return pydantic contracts, never raw rows.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.core.contracts import (
    Alert,
    AlertDetail,
    AlertStatus,
    Event,
    EventType,
    Evidence,
    Severity,
)
from app.core.errors import StoreError
from app.core.time import minutes_ago_iso, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


# ── Abstract interface ───────────────────────────────────────────────

class EventStore(ABC):
    """Async read/write interface over the events/alerts tables."""

    name: str = "store"

    @abstractmethod
    async def list_events(self, limit: int = DEFAULT_LIMIT) -> List[Event]:
        ...

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[Event]:
        ...

    @abstractmethod
    async def insert_events(self, events: Sequence[Event], *, ignore_duplicates: bool = False) -> List[Event]:
        """Batch insert. Returns the rows actually written."""
        ...

    @abstractmethod
    async def events_by_type(self, event_type: EventType) -> List[Event]:
        ...

    @abstractmethod
    async def events_by_severity(self, severity: Severity) -> List[Event]:
        """Events that have at least one alert with this severity."""
        ...

    @abstractmethod
    async def list_alerts(
        self,
        *,
        severity: Optional[Severity] = None,
        status: Optional[AlertStatus] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[Alert]:
        ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[AlertDetail]:
        ...

    @abstractmethod
    async def find_alert_for_event(self, event_id: str) -> Optional[Alert]:
        ...

    @abstractmethod
    async def insert_alerts(self, alerts: Sequence[Alert]) -> List[Alert]:
        ...

    @abstractmethod
    async def update_alert(self, alert_id: str, fields: Dict[str, Any]) -> Optional[Alert]:
        """Merge `fields` into the alert. None if it does not exist."""
        ...

    @abstractmethod
    async def log_system(
        self,
        *,
        level: str,
        service: str,
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


# ── Supabase backend ─────────────────────────────────────────────────

def _truncate(text: str, n: int = 800) -> str:
    return (text or "")[:n]


class SupaStore(EventStore):
    """
    Supabase REST store.

    Tables: events, alerts, evidences, system_logs. Writes ask for
    `return=representation` so callers get the stored rows back.
    """

    name = "supabase"

    def __init__(
        self,
        *,
        url: str,
        service_role_key: str,
        timeout_s: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not service_role_key:
            raise RuntimeError("Supabase not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)")
        self.base = url.rstrip("/")
        self.key = service_role_key
        self.timeout_s = timeout_s
        self._transport = transport

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        h = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if prefer:
            h["Prefer"] = prefer
        return h

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        url = f"{self.base}/rest/v1/{table}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.request(method, url, headers=self._headers(prefer), params=params, json=json)
        except httpx.HTTPError as e:
            raise StoreError(f"supa_{method.lower()}_failed table={table} err={e!r}") from e

        if resp.status_code >= 400:
            body = _truncate(resp.text)
            raise StoreError(
                f"supa_{method.lower()}_failed table={table} status={resp.status_code} body={body}",
                status_code=resp.status_code,
                body=body,
            )

        if not resp.content:
            return []
        return resp.json()

    # ── events ──

    async def list_events(self, limit: int = DEFAULT_LIMIT) -> List[Event]:
        rows = await self._request(
            "GET",
            "events",
            params=[("select", "*"), ("order", "created_at.desc"), ("limit", str(max(1, int(limit))))],
        )
        return [Event.model_validate(r) for r in rows]

    async def get_event(self, event_id: str) -> Optional[Event]:
        rows = await self._request("GET", "events", params=[("select", "*"), ("id", f"eq.{event_id}")])
        return Event.model_validate(rows[0]) if rows else None

    async def insert_events(self, events: Sequence[Event], *, ignore_duplicates: bool = False) -> List[Event]:
        if not events:
            return []
        payload = [e.model_dump(mode="json", exclude_none=True) for e in events]
        if ignore_duplicates:
            rows = await self._request(
                "POST",
                "events",
                params=[("on_conflict", "id")],
                json=payload,
                prefer="resolution=ignore-duplicates,return=representation",
            )
        else:
            rows = await self._request("POST", "events", json=payload, prefer="return=representation")
        return [Event.model_validate(r) for r in rows]

    async def events_by_type(self, event_type: EventType) -> List[Event]:
        rows = await self._request(
            "GET",
            "events",
            params=[
                ("select", "*"),
                ("event_type", f"eq.{EventType(event_type).value}"),
                ("order", "created_at.desc"),
            ],
        )
        return [Event.model_validate(r) for r in rows]

    async def events_by_severity(self, severity: Severity) -> List[Event]:
        rows = await self._request(
            "GET",
            "events",
            params=[
                ("select", "*,alerts!inner(severity)"),
                ("alerts.severity", f"eq.{Severity(severity).value}"),
                ("order", "created_at.desc"),
            ],
        )
        return [Event.model_validate(r) for r in rows]

    # ── alerts ──

    async def list_alerts(
        self,
        *,
        severity: Optional[Severity] = None,
        status: Optional[AlertStatus] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[Alert]:
        params: list[tuple[str, str]] = [("select", "*")]
        if severity is not None:
            params.append(("severity", f"eq.{Severity(severity).value}"))
        if status is not None:
            params.append(("status", f"eq.{AlertStatus(status).value}"))
        params.append(("order", "created_at.desc"))
        params.append(("limit", str(max(1, int(limit)))))

        rows = await self._request("GET", "alerts", params=params)
        return [Alert.model_validate(r) for r in rows]

    async def get_alert(self, alert_id: str) -> Optional[AlertDetail]:
        rows = await self._request("GET", "alerts", params=[("select", "*,events(*)"), ("id", f"eq.{alert_id}")])
        if not rows:
            return None
        row = dict(rows[0])
        event = row.pop("events", None)

        ev_rows = await self._request(
            "GET",
            "evidences",
            params=[("select", "*"), ("event_id", f"eq.{row.get('event_id')}"), ("order", "added_at.desc")],
        )
        return AlertDetail.model_validate({**row, "event": event, "evidences": ev_rows})

    async def find_alert_for_event(self, event_id: str) -> Optional[Alert]:
        rows = await self._request(
            "GET",
            "alerts",
            params=[("select", "*"), ("event_id", f"eq.{event_id}"), ("order", "created_at.desc"), ("limit", "1")],
        )
        return Alert.model_validate(rows[0]) if rows else None

    async def insert_alerts(self, alerts: Sequence[Alert]) -> List[Alert]:
        if not alerts:
            return []
        payload = [a.model_dump(mode="json", exclude_none=True) for a in alerts]
        rows = await self._request("POST", "alerts", json=payload, prefer="return=representation")
        return [Alert.model_validate(r) for r in rows]

    async def update_alert(self, alert_id: str, fields: Dict[str, Any]) -> Optional[Alert]:
        rows = await self._request(
            "PATCH",
            "alerts",
            params=[("id", f"eq.{alert_id}")],
            json=fields,
            prefer="return=representation",
        )
        return Alert.model_validate(rows[0]) if rows else None

    # ── system logs ──

    async def log_system(
        self,
        *,
        level: str,
        service: str,
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._request(
            "POST",
            "system_logs",
            json=[{"level": level, "service": service, "message": message, "error_details": error_details or {}}],
            prefer="return=minimal",
        )


# ── Demo backend ─────────────────────────────────────────────────────

_DEMO_EVENTS: List[Dict[str, Any]] = [
    {
        "id": "evt_demo_001",
        "source": "firms",
        "event_type": "fire",
        "confidence": 0.94,
        "location": "Uttarakhand, Northern Ridge",
        "latitude": 30.45,
        "longitude": 78.15,
        "properties": {"brightness": 320, "satellite": "VIIRS"},
        "_age_min": 2,
    },
    {
        "id": "evt_demo_002",
        "source": "deforestation_model",
        "event_type": "deforestation",
        "confidence": 0.87,
        "location": "Madhya Pradesh",
        "latitude": 22.9,
        "longitude": 78.65,
        "properties": {"area_hectares": 250},
        "_age_min": 15,
    },
    {
        "id": "evt_demo_003",
        "source": "aqi_api",
        "event_type": "pollution",
        "confidence": 0.91,
        "location": "Delhi NCR",
        "latitude": 28.5,
        "longitude": 77.1,
        "properties": {"aqi": 387},
        "_age_min": 28,
    },
    {
        "id": "evt_demo_004",
        "source": "flood_model",
        "event_type": "flood",
        "confidence": 0.78,
        "location": "Bihar, Kosi Basin",
        "latitude": 26.15,
        "longitude": 87.5,
        "properties": {"rainfall_mm": 85},
        "_age_min": 60,
    },
]

_DEMO_PLAN: Dict[str, Any] = {
    "immediate": [
        "Evacuate villages within 5km radius",
        "Deploy 8 fire truck units from nearest stations",
        "Alert medical centers for potential casualties",
        "Establish command center at district HQ",
    ],
    "medium_term": [
        "Set up 20 relief camps",
        "Arrange food and water supply for 10,000 people",
        "Deploy forest personnel for containment",
    ],
    "resources": [
        {"name": "Fire Trucks", "quantity": 8},
        {"name": "Helicopters", "quantity": 2},
    ],
    "sms": "ALERT: Forest fire near Mussoorie. Evacuate immediately. Call 112. -RAKSHAK",
    "legal_notice": "Government Order issued for immediate evacuation under Disaster Management Act 2005",
}


def _seed_events() -> Dict[str, Event]:
    out: Dict[str, Event] = {}
    for raw in _DEMO_EVENTS:
        row = {k: v for k, v in raw.items() if not k.startswith("_")}
        row["created_at"] = minutes_ago_iso(raw["_age_min"])
        out[row["id"]] = Event.model_validate(row)
    return out


def _seed_alerts() -> Dict[str, Alert]:
    ts = minutes_ago_iso(2)
    alert = Alert(
        id="alrt_demo_001",
        event_id="evt_demo_001",
        severity=Severity.CRITICAL,
        status=AlertStatus.OPEN,
        suggested_actions=copy.deepcopy(_DEMO_PLAN),
        created_at=ts,
        updated_at=ts,
    )
    return {alert.id: alert}


def _seed_evidences() -> List[Evidence]:
    return [
        Evidence(
            id="evt_demo_001_evidence",
            event_id="evt_demo_001",
            storage_path="demo/evt_demo_001/viirs_thermal.png",
            type="satellite",
            title="Thermal infrared showing active fire hotspot",
            added_at=minutes_ago_iso(2),
        )
    ]


def _newest_first(items: list) -> list:
    return sorted(items, key=lambda x: x.created_at, reverse=True)


class DemoStore(EventStore):
    """
    In-memory store for running without Supabase.

    Every instance starts from the same seeded dataset and keeps its own
    writes; nothing is shared between instances.
    """

    name = "demo"

    def __init__(self) -> None:
        self._events: Dict[str, Event] = _seed_events()
        self._alerts: Dict[str, Alert] = _seed_alerts()
        self._evidences: List[Evidence] = _seed_evidences()
        self.system_logs: List[Dict[str, Any]] = []

    async def list_events(self, limit: int = DEFAULT_LIMIT) -> List[Event]:
        return _newest_first(list(self._events.values()))[: max(1, int(limit))]

    async def get_event(self, event_id: str) -> Optional[Event]:
        return self._events.get(event_id)

    async def insert_events(self, events: Sequence[Event], *, ignore_duplicates: bool = False) -> List[Event]:
        written: List[Event] = []
        for e in events:
            if e.id in self._events:
                if ignore_duplicates:
                    continue
                raise StoreError(f"duplicate key value violates unique constraint: events.id={e.id}", status_code=409)
            self._events[e.id] = e
            written.append(e)
        return written

    async def events_by_type(self, event_type: EventType) -> List[Event]:
        et = EventType(event_type)
        return _newest_first([e for e in self._events.values() if e.event_type is et])

    async def events_by_severity(self, severity: Severity) -> List[Event]:
        sev = Severity(severity)
        ids = {a.event_id for a in self._alerts.values() if a.severity is sev}
        return _newest_first([e for e in self._events.values() if e.id in ids])

    async def list_alerts(
        self,
        *,
        severity: Optional[Severity] = None,
        status: Optional[AlertStatus] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[Alert]:
        out = list(self._alerts.values())
        if severity is not None:
            out = [a for a in out if a.severity is Severity(severity)]
        if status is not None:
            out = [a for a in out if a.status is AlertStatus(status)]
        return _newest_first(out)[: max(1, int(limit))]

    async def get_alert(self, alert_id: str) -> Optional[AlertDetail]:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        return AlertDetail(
            **alert.model_dump(),
            event=self._events.get(alert.event_id),
            evidences=[ev for ev in self._evidences if ev.event_id == alert.event_id],
        )

    async def find_alert_for_event(self, event_id: str) -> Optional[Alert]:
        matches = [a for a in self._alerts.values() if a.event_id == event_id]
        return _newest_first(matches)[0] if matches else None

    async def insert_alerts(self, alerts: Sequence[Alert]) -> List[Alert]:
        for a in alerts:
            if a.id in self._alerts:
                raise StoreError(f"duplicate key value violates unique constraint: alerts.id={a.id}", status_code=409)
        for a in alerts:
            self._alerts[a.id] = a
        return list(alerts)

    async def update_alert(self, alert_id: str, fields: Dict[str, Any]) -> Optional[Alert]:
        current = self._alerts.get(alert_id)
        if current is None:
            return None
        merged = Alert.model_validate({**current.model_dump(), **fields})
        self._alerts[alert_id] = merged
        return merged

    async def log_system(
        self,
        *,
        level: str,
        service: str,
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.system_logs.append(
            {
                "level": level,
                "service": service,
                "message": message,
                "error_details": error_details or {},
                "created_at": utc_now_iso(),
            }
        )
