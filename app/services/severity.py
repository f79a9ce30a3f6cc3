from __future__ import annotations

from app.core.contracts import EventType, Severity


def classify_severity(event_type: EventType, confidence: float) -> Severity:
    """
    Single severity table for every alert the service creates.

    First match wins and all comparisons are strict, so fire at exactly 0.90
    is "high", not "critical".
    """
    if event_type is EventType.FIRE and confidence > 0.90:
        return Severity.CRITICAL
    if event_type is EventType.FIRE and confidence > 0.75:
        return Severity.HIGH
    if event_type in (EventType.DEFORESTATION, EventType.FLOOD) and confidence > 0.80:
        return Severity.HIGH
    if confidence > 0.60:
        return Severity.MEDIUM
    return Severity.LOW

