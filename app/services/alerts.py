from __future__ import annotations

import logging
from typing import Any, Dict

from app.core.contracts import (
    ActionHints,
    Alert,
    AlertPatch,
    AlertStatus,
    GenerateActionRequest,
    GenerateActionResponse,
)
from app.core.errors import InvalidTransition, MissingFields, NotFoundError
from app.core.keying import new_alert_id
from app.core.time import utc_now_iso
from app.services.action_plan import ActionPlanGenerator
from app.services.severity import classify_severity
from app.services.store import EventStore

logger = logging.getLogger(__name__)


def ensure_forward(current: AlertStatus, target: AlertStatus) -> None:
    """Status only moves open -> acknowledged -> resolved. Staying put is allowed."""
    if target.rank < current.rank:
        raise InvalidTransition(f"cannot move alert from {current.value} to {target.value}")


class Alerts:
    """Alert workflows that span the store and the action-plan generator."""

    def __init__(self, *, store: EventStore, planner: ActionPlanGenerator) -> None:
        self.store = store
        self.planner = planner

    async def _require(self, alert_id: str) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("alert_not_found", f"Alert not found: {alert_id}")
        return alert

    async def generate(self, alert_id: str, req: GenerateActionRequest) -> GenerateActionResponse:
        """
        Draft an action plan for an event and attach it to that event's alert,
        creating the alert if the event has none yet.

        The event defaults to the one behind `alert_id`. `event_details`
        overrides stored event fields for the prompt only.
        """
        event_id = req.event_id
        if not event_id:
            existing = await self.store.get_alert(alert_id)
            event_id = existing.event_id if existing else None
        if not event_id:
            raise MissingFields(["event_id"])

        event = await self.store.get_event(event_id)
        if event is None:
            raise NotFoundError("event_not_found", f"Event not found: {event_id}")

        prompt_event: Dict[str, Any] = {**event.model_dump(mode="json"), **(req.event_details or {})}
        hints = ActionHints(
            predicted_spread=req.predicted_spread,
            nearby_villages=req.nearby_villages,
            resources_available=req.resources_available,
        )
        plan = await self.planner.generate(prompt_event, hints)
        actions = plan.model_dump(mode="json", exclude_none=True)
        now = utc_now_iso()

        current = await self.store.find_alert_for_event(event_id)
        if current is not None:
            alert = await self.store.update_alert(current.id, {"suggested_actions": actions, "updated_at": now})
            if alert is None:
                raise NotFoundError("alert_not_found", f"Alert not found: {current.id}")
            logger.info("[alerts] updated action plan on %s", alert.id)
        else:
            alert = Alert(
                id=new_alert_id(),
                event_id=event_id,
                severity=classify_severity(event.event_type, event.confidence),
                status=AlertStatus.OPEN,
                suggested_actions=actions,
                created_at=now,
                updated_at=now,
            )
            written = await self.store.insert_alerts([alert])
            alert = written[0] if written else alert
            logger.info("[alerts] created %s for %s", alert.id, event_id)

        return GenerateActionResponse(alert=alert, actions=plan)

    async def patch(self, alert_id: str, patch: AlertPatch) -> Alert:
        fields = patch.model_dump(mode="json", exclude_none=True)
        if patch.status is not None:
            current = await self._require(alert_id)
            ensure_forward(current.status, patch.status)
        fields["updated_at"] = utc_now_iso()

        alert = await self.store.update_alert(alert_id, fields)
        if alert is None:
            raise NotFoundError("alert_not_found", f"Alert not found: {alert_id}")
        return alert

    async def set_status(self, alert_id: str, status: AlertStatus) -> Alert:
        current = await self._require(alert_id)
        ensure_forward(current.status, status)
        if current.status is status:
            return Alert.model_validate(current.model_dump(exclude={"event", "evidences"}))

        alert = await self.store.update_alert(alert_id, {"status": status.value, "updated_at": utc_now_iso()})
        if alert is None:
            raise NotFoundError("alert_not_found", f"Alert not found: {alert_id}")
        logger.info("[alerts] %s -> %s", alert_id, status.value)
        return alert
