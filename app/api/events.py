from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from app.core.contracts import EVENT_REQUIRED_FIELDS, Event, EventCreate, EventType, Severity
from app.core.errors import bad_request, not_found
from app.core.keying import new_event_id
from app.core.time import utc_now_iso
from app.services.store import EventStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


def get_store() -> EventStore:
    raise RuntimeError("EventStore must be provided by app dependency override")


def _missing_fields(body: EventCreate) -> List[str]:
    missing: List[str] = []
    for name in EVENT_REQUIRED_FIELDS:
        value = getattr(body, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def _parse_enum(enum_cls, raw: str, code: str):
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        bad_request(code, f"Unknown value '{raw}'. Expected one of: {allowed}")


@router.get("", response_model=List[Event])
async def list_events(store: EventStore = Depends(get_store)) -> List[Event]:
    return await store.list_events()


@router.post("", response_model=Event, status_code=201)
async def create_event(body: EventCreate, store: EventStore = Depends(get_store)) -> Event:
    missing = _missing_fields(body)
    if missing:
        bad_request(
            "validation_failed",
            f"Missing required fields: {', '.join(missing)}",
            missing=missing,
        )

    try:
        event = Event(
            id=new_event_id(),
            source=body.source,
            event_type=body.event_type,
            confidence=body.confidence,
            location=body.location,
            latitude=body.latitude,
            longitude=body.longitude,
            properties=body.properties or {},
            created_at=utc_now_iso(),
        )
    except ValidationError as ve:
        fields = sorted({str(err["loc"][0]) for err in ve.errors() if err.get("loc")})
        bad_request("validation_failed", f"Invalid fields: {', '.join(fields)}", invalid=fields)

    written = await store.insert_events([event])
    logger.info("[events] created %s (%s)", event.id, event.event_type.value)
    return written[0] if written else event


@router.get("/type/{event_type}", response_model=List[Event])
async def events_by_type(event_type: str, store: EventStore = Depends(get_store)) -> List[Event]:
    et = _parse_enum(EventType, event_type, "invalid_event_type")
    return await store.events_by_type(et)


@router.get("/severity/{severity}", response_model=List[Event])
async def events_by_severity(severity: str, store: EventStore = Depends(get_store)) -> List[Event]:
    sev = _parse_enum(Severity, severity, "invalid_severity")
    return await store.events_by_severity(sev)


@router.get("/{event_id}", response_model=Event)
async def get_event(event_id: str, store: EventStore = Depends(get_store)) -> Event:
    event = await store.get_event(event_id)
    if event is None:
        not_found("event_not_found", f"Event not found: {event_id}")
    return event
