# app/services/action_plan.py
"""
Government action plans for an event.

The model is asked for a JSON object (immediate, medium, resources, sms,
legal_notice). Its answer is parsed best-effort; anything short of a valid
plan falls back to a fixed per-type template so callers always get a plan.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from app.core.contracts import ActionHints, ActionPlan
from app.core.time import utc_now_iso

logger = logging.getLogger(__name__)


class ActionPlanUnavailable(RuntimeError):
    """The model path produced no usable plan. Never leaves this module."""


# ──────────────────────────────────────────────────────────────
# JSON extraction
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class JsonExtraction:
    ok: bool
    value: Optional[Dict[str, Any]] = None
    error: str = ""


def extract_json_block(text: str) -> JsonExtraction:
    """
    Pull a JSON object out of free-form model output.

    Tries the span from the first "{" to the last "}" (handles prose or code
    fences around the object), then the first complete object starting at
    the first "{" (handles trailing braces in prose after it).
    """
    if not text:
        return JsonExtraction(ok=False, error="empty text")

    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return JsonExtraction(ok=False, error="no JSON object in text")

    try:
        value = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        try:
            value, _ = json.JSONDecoder().raw_decode(text[start:])
        except json.JSONDecodeError:
            return JsonExtraction(ok=False, error=f"invalid JSON: {e}")

    if not isinstance(value, dict):
        return JsonExtraction(ok=False, error="JSON value is not an object")
    return JsonExtraction(ok=True, value=value)


# ──────────────────────────────────────────────────────────────
# Prompt
# ──────────────────────────────────────────────────────────────

def _confidence_pct(raw: Any) -> str:
    try:
        return f"{float(raw) * 100:.0f}%"
    except (TypeError, ValueError):
        return "0%"


def build_prompt(event: Dict[str, Any], hints: ActionHints) -> str:
    event_type = event.get("event_type") or "unknown"
    location = event.get("location") or "Unknown location"
    villages = ", ".join(hints.nearby_villages) or "None identified"
    resources = ", ".join(f"{k}: {v}" for k, v in hints.resources_available.items()) or "Not specified"

    return f"""You are an emergency response assistant for the Indian government. Analyze this environmental incident and generate immediate action recommendations.

INCIDENT DATA:
- Type: {event_type}
- Location: {location}
- Confidence: {_confidence_pct(event.get("confidence"))}
- Predicted Spread: {hints.predicted_spread or "Unknown"}
- Nearby Villages: {villages}
- Resources Available: {resources}
- Time: {utc_now_iso()}

Respond with a single JSON object:
{{
  "immediate": ["action1", "action2", ...] (3-4 critical actions for the first hour),
  "medium": ["action1", "action2", ...] (2-3 medium-term actions),
  "resources": [{{"name": "resource", "quantity": number}}, ...],
  "sms": "SMS alert message (max 160 chars)",
  "legal_notice": "If applicable, draft of legal notice"
}}

Focus on actionable, specific instructions that government officers can execute immediately."""


# ──────────────────────────────────────────────────────────────
# Fallback plans
# ──────────────────────────────────────────────────────────────

_FALLBACK: Dict[str, Dict[str, Any]] = {
    "fire": {
        "immediate": [
            "Evacuate villages within 5km radius",
            "Deploy fire truck units from nearest stations",
            "Alert medical centers for potential casualties",
            "Establish incident command center at district HQ",
        ],
        "medium_term": [
            "Mobilize disaster response teams",
            "Arrange temporary shelters",
            "Alert neighboring states",
            "Deploy aerial firefighting resources",
        ],
        "resources": [
            {"name": "Fire Trucks", "quantity": 8},
            {"name": "Helicopters", "quantity": 2},
            {"name": "Personnel", "quantity": 150},
            {"name": "Water Tankers", "quantity": 4},
        ],
        "sms": "ALERT: Forest fire active near {location}. Evacuate immediately. Call 112. -RAKSHAK",
    },
    "deforestation": {
        "immediate": [
            "Dispatch forest protection team",
            "Document evidence for legal action",
            "Block access roads to area",
            "Notify district forest officer",
        ],
        "medium_term": [
            "Initiate legal proceedings",
            "Engage local community",
            "Plan reforestation",
        ],
        "resources": [
            {"name": "Forest Officers", "quantity": 5},
            {"name": "Police Units", "quantity": 2},
            {"name": "Documentation Experts", "quantity": 3},
        ],
        "sms": "ALERT: Unauthorized tree cutting detected near {location}. Forest dept investigating. -RAKSHAK",
    },
    "pollution": {
        "immediate": [
            "Issue air quality warning",
            "Advise vulnerable populations to stay indoors",
            "Prepare health facilities",
            "Monitor pollution spread",
        ],
        "medium_term": [
            "Implement traffic restrictions",
            "Close schools if AQI severe",
            "Distribute masks to vulnerable groups",
        ],
        "resources": [
            {"name": "Health Centers", "quantity": 10},
            {"name": "Ambulances", "quantity": 15},
            {"name": "Air Quality Monitors", "quantity": 20},
        ],
        "sms": "ALERT: High pollution levels near {location}. Sensitive groups stay indoors. Masks recommended. -RAKSHAK",
    },
    "flood": {
        "immediate": [
            "Pre-position rescue boats",
            "Alert district administration",
            "Prepare evacuation routes",
            "Alert medical teams",
        ],
        "medium_term": [
            "Arrange temporary shelters",
            "Stock relief materials",
            "Coordinate with neighboring districts",
        ],
        "resources": [
            {"name": "Rescue Boats", "quantity": 8},
            {"name": "Personnel", "quantity": 200},
            {"name": "Relief Camps", "quantity": 5},
            {"name": "Medical Units", "quantity": 10},
        ],
        "sms": "FLOOD WARNING: Heavy flooding likely near {location}. Move to high ground. Call 112. -RAKSHAK",
    },
}

_FALLBACK_DEFAULT: Dict[str, Any] = {
    "immediate": [
        "Alert district authorities",
        "Document incident details",
        "Monitor situation",
    ],
    "medium_term": ["Coordinate response teams", "Prepare public alerts"],
    "resources": [{"name": "Response Teams", "quantity": 5}],
    "sms": "ALERT: Environmental incident detected near {location}. Authorities responding. -RAKSHAK",
}


def fallback_plan(event: Dict[str, Any]) -> ActionPlan:
    """Deterministic plan for any event dict, including empty or malformed ones."""
    raw_type = event.get("event_type")
    event_type = str(getattr(raw_type, "value", raw_type) or "").strip().lower()
    location = str(event.get("location") or "").strip() or "the affected area"

    template = _FALLBACK.get(event_type, _FALLBACK_DEFAULT)
    return ActionPlan(
        immediate=list(template["immediate"]),
        medium_term=list(template["medium_term"]),
        resources=[dict(r) for r in template["resources"]],
        sms=template["sms"].format(location=location),
    )


# ──────────────────────────────────────────────────────────────
# Generator
# ──────────────────────────────────────────────────────────────

def _output_text(data: Dict[str, Any]) -> Optional[str]:
    if isinstance(data.get("output_text"), str) and data["output_text"]:
        return data["output_text"]
    output = data.get("output")
    if not isinstance(output, list):
        return None
    for item in output:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for c in content:
            if isinstance(c, dict) and c.get("type") == "output_text" and c.get("text"):
                return c["text"]
    return None


class ActionPlanGenerator:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float = 25.0,
        max_tokens: int = 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base = base_url.rstrip("/")
        self._timeout = timeout_s
        self._max_tokens = max_tokens
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def generate(self, event: Dict[str, Any], hints: ActionHints | None = None) -> ActionPlan:
        """Model plan when possible, otherwise the fallback template. Never raises."""
        hints = hints or ActionHints()
        if not self._api_key:
            logger.info("[plan] OPENAI_API_KEY not set, using fallback plan")
            return fallback_plan(event)

        try:
            return await self._ask_model(event, hints)
        except ActionPlanUnavailable as e:
            logger.warning("[plan] model plan unavailable, using fallback: %s", e)
            return fallback_plan(event)

    async def _ask_model(self, event: Dict[str, Any], hints: ActionHints) -> ActionPlan:
        body = {
            "model": self._model,
            "input": [{"role": "user", "content": build_prompt(event, hints)}],
            "max_output_tokens": self._max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(f"{self._base}/responses", headers=headers, json=body)
        except httpx.HTTPError as e:
            raise ActionPlanUnavailable(f"request failed: {e!r}") from e

        if r.status_code >= 400:
            raise ActionPlanUnavailable(f"OpenAI /responses {r.status_code}: {r.text[:400]}")

        try:
            data = r.json()
        except ValueError as e:
            raise ActionPlanUnavailable(f"non-JSON response body: {e}") from e

        out_text = _output_text(data) if isinstance(data, dict) else None
        if not out_text:
            raise ActionPlanUnavailable("missing output_text")

        extracted = extract_json_block(out_text)
        if not extracted.ok:
            raise ActionPlanUnavailable(f"{extracted.error}. text={out_text[:400]}")

        try:
            plan = ActionPlan.model_validate(extracted.value)
        except ValidationError as e:
            raise ActionPlanUnavailable(f"plan did not validate: {e.error_count()} errors") from e

        if not plan.immediate or not plan.sms:
            raise ActionPlanUnavailable("plan is missing immediate actions or sms")
        return plan

