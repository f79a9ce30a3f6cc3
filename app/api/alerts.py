from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.core.contracts import (
    Alert,
    AlertDetail,
    AlertPatch,
    AlertStatus,
    GenerateActionRequest,
    GenerateActionResponse,
    Severity,
)
from app.core.errors import InvalidTransition, MissingFields, NotFoundError, bad_request, conflict, not_found
from app.services.alerts import Alerts
from app.services.store import EventStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


def get_store() -> EventStore:
    raise RuntimeError("EventStore must be provided by app dependency override")


def get_alerts_service() -> Alerts:
    raise RuntimeError("Alerts must be provided by app dependency override")


@router.get("", response_model=List[Alert])
async def list_alerts(
    severity: Optional[Severity] = Query(default=None),
    status: Optional[AlertStatus] = Query(default=None),
    store: EventStore = Depends(get_store),
) -> List[Alert]:
    return await store.list_alerts(severity=severity, status=status)


@router.get("/{alert_id}", response_model=AlertDetail)
async def get_alert(alert_id: str, store: EventStore = Depends(get_store)) -> AlertDetail:
    alert = await store.get_alert(alert_id)
    if alert is None:
        not_found("alert_not_found", f"Alert not found: {alert_id}")
    return alert


@router.post("/{alert_id}/generate", response_model=GenerateActionResponse)
async def generate_action(
    alert_id: str,
    req: Optional[GenerateActionRequest] = None,
    svc: Alerts = Depends(get_alerts_service),
) -> GenerateActionResponse:
    try:
        return await svc.generate(alert_id, req or GenerateActionRequest())
    except MissingFields as e:
        bad_request("validation_failed", str(e), missing=e.missing)
    except NotFoundError as e:
        not_found(e.code, e.message)


@router.patch("/{alert_id}", response_model=Alert)
async def update_alert(alert_id: str, patch: AlertPatch, svc: Alerts = Depends(get_alerts_service)) -> Alert:
    try:
        return await svc.patch(alert_id, patch)
    except NotFoundError as e:
        not_found(e.code, e.message)
    except InvalidTransition as e:
        conflict("invalid_transition", str(e))


async def _move(svc: Alerts, alert_id: str, status: AlertStatus) -> Alert:
    try:
        return await svc.set_status(alert_id, status)
    except NotFoundError as e:
        not_found(e.code, e.message)
    except InvalidTransition as e:
        conflict("invalid_transition", str(e))


@router.post("/{alert_id}/acknowledge", response_model=Alert)
async def acknowledge_alert(alert_id: str, svc: Alerts = Depends(get_alerts_service)) -> Alert:
    return await _move(svc, alert_id, AlertStatus.ACKNOWLEDGED)


@router.post("/{alert_id}/resolve", response_model=Alert)
async def resolve_alert(alert_id: str, svc: Alerts = Depends(get_alerts_service)) -> Alert:
    return await _move(svc, alert_id, AlertStatus.RESOLVED)
