from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────

class EventType(str, Enum):
    FIRE = "fire"
    DEFORESTATION = "deforestation"
    POLLUTION = "pollution"
    FLOOD = "flood"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertStatus(str, Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED]


class EvidenceType(str, Enum):
    SATELLITE = "satellite"
    SENSOR = "sensor"
    AI = "ai"  # model-derived


class RealtimeTable(str, Enum):
    EVENTS = "events"
    ALERTS = "alerts"


# ──────────────────────────────────────────────────────────────
# Events
# ──────────────────────────────────────────────────────────────

class Event(BaseModel):
    id: str
    source: str                     # "firms", "deforestation_model", "aqi_api", "flood_model", ...
    event_type: EventType
    confidence: float = Field(ge=0.0, le=1.0)
    location: str                   # resolved region name
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    properties: Dict[str, Any] = Field(default_factory=dict)
    created_at: str                 # ISO8601 UTC
    updated_at: Optional[str] = None


class EventCreate(BaseModel):
    """
    POST /events body. Every field is optional here so the route can answer
    with the full list of missing fields instead of the first one.
    """
    source: Optional[str] = None
    event_type: Optional[str] = None
    confidence: Optional[float] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    properties: Optional[Dict[str, Any]] = None


EVENT_REQUIRED_FIELDS = ("source", "event_type", "confidence", "location", "latitude", "longitude")


# ──────────────────────────────────────────────────────────────
# Action plans
# ──────────────────────────────────────────────────────────────

class ResourceItem(BaseModel):
    name: str
    quantity: int = 0


class ActionPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    immediate: List[str] = Field(default_factory=list)
    medium_term: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("medium_term", "medium"),
    )
    resources: List[ResourceItem] = Field(default_factory=list)
    sms: str = ""
    legal_notice: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("legal_notice", "legal"),
    )


class ActionHints(BaseModel):
    predicted_spread: Optional[str] = None
    nearby_villages: List[str] = Field(default_factory=list)
    resources_available: Dict[str, int] = Field(default_factory=dict)


# ──────────────────────────────────────────────────────────────
# Alerts + evidence
# ──────────────────────────────────────────────────────────────

class Evidence(BaseModel):
    id: str
    event_id: str
    storage_path: str
    thumbnail_url: Optional[str] = None
    type: EvidenceType = EvidenceType.SATELLITE
    title: str = ""
    added_at: str


class Alert(BaseModel):
    id: str
    event_id: str
    severity: Severity
    status: AlertStatus = AlertStatus.OPEN
    # Empty dict until an action plan is generated.
    suggested_actions: Dict[str, Any] = Field(default_factory=dict)
    generated_pdf_url: Optional[str] = None
    created_at: str
    updated_at: str


class AlertDetail(Alert):
    event: Optional[Event] = None
    evidences: List[Evidence] = Field(default_factory=list)


class AlertPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    severity: Optional[Severity] = None
    status: Optional[AlertStatus] = None
    suggested_actions: Optional[Dict[str, Any]] = None
    generated_pdf_url: Optional[str] = None


class GenerateActionRequest(BaseModel):
    event_id: Optional[str] = None
    event_details: Optional[Dict[str, Any]] = None
    predicted_spread: Optional[str] = None
    nearby_villages: List[str] = Field(default_factory=list)
    resources_available: Dict[str, int] = Field(default_factory=dict)


class GenerateActionResponse(BaseModel):
    alert: Alert
    actions: ActionPlan


# ──────────────────────────────────────────────────────────────
# Ingestion
# ──────────────────────────────────────────────────────────────

class IngestionResult(BaseModel):
    success: bool = True
    message: str = "Ingestion completed"
    events_processed: int = 0
    timestamp: str


class IntegrationStatus(BaseModel):
    configured: bool
    detail: str


class IngestionStatus(BaseModel):
    status: str = "operational"
    services: Dict[str, IntegrationStatus] = Field(default_factory=dict)
    last_check: str
