# app/services/firms.py
"""
NASA FIRMS active-fire feed: fetch, parse, resolve.

Source: https://firms.modaps.eosdis.nasa.gov/api/
Format: CSV with a header row. VIIRS products carry bright_ti4/bright_ti5
and single-letter confidence (l/n/h); MODIS carries brightness and a
numeric 0-100 confidence.

Parsing is best-effort: a bad row is dropped, never raised. Only a failure
to fetch the feed at all is surfaced (FeedFetchError).
"""
from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import FeedFetchError

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════
# Detection record
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Detection:
    """One FIRMS row. Columns missing from the header keep these defaults."""
    latitude: float = 0.0
    longitude: float = 0.0
    brightness: float = 0.0
    bright_ti4: float = 0.0
    bright_ti5: float = 0.0
    scan: float = 0.0
    track: float = 0.0
    acq_date: str = ""
    acq_time: str = ""
    satellite: str = ""
    confidence: str = ""       # "low"/"nominal"/"high", "l"/"n"/"h", or "0".."100"
    version: str = ""
    frp: float = 0.0
    daynight: str = ""
    type: int = 0

    def properties(self) -> Dict[str, Any]:
        return {
            "brightness": self.brightness,
            "bright_ti4": self.bright_ti4,
            "bright_ti5": self.bright_ti5,
            "scan": self.scan,
            "track": self.track,
            "satellite": self.satellite,
            "confidence_str": self.confidence,
            "daynight": self.daynight,
            "frp": self.frp,
            "acq_date": self.acq_date,
            "acq_time": self.acq_time,
        }


_FLOAT_COLS = ("latitude", "longitude", "brightness", "bright_ti4", "bright_ti5", "scan", "track", "frp")
_TEXT_COLS = ("acq_date", "acq_time", "satellite", "confidence", "version", "daynight")
_INT_COLS = ("type",)


def _safe_float(x: Any) -> Optional[float]:
    try:
        f = float(x)
        if math.isfinite(f):
            return f
    except (TypeError, ValueError):
        return None
    return None


def _safe_int(x: Any) -> Optional[int]:
    try:
        return int(str(x).strip())
    except (TypeError, ValueError):
        f = _safe_float(x)
        return int(f) if f is not None else None


# ══════════════════════════════════════════════════════════════
# CSV parsing
# ══════════════════════════════════════════════════════════════

def _row_to_detection(row: Dict[str, Any]) -> Optional[Detection]:
    fields: Dict[str, Any] = {}

    for col in _FLOAT_COLS:
        if col in row:
            fields[col] = _safe_float(row[col]) or 0.0
    for col in _TEXT_COLS:
        if col in row:
            fields[col] = (row[col] or "").strip()
    for col in _INT_COLS:
        if col in row:
            fields[col] = _safe_int(row[col]) or 0

    # 0 counts as missing: a hotspot at exactly lat 0 or lon 0 is dropped.
    lat = fields.get("latitude")
    lon = fields.get("longitude")
    if not lat or not lon:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None

    return Detection(**fields)


def parse_firms_csv(text: str) -> List[Detection]:
    """
    Decode FIRMS CSV into detections, in file order.

    Unknown columns are ignored, missing ones keep defaults, and rows
    without a usable latitude/longitude are skipped.
    """
    if not text or not text.strip():
        return []

    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    header = next(reader, None)
    if not header:
        return []
    keys = [h.strip() for h in header]

    out: List[Detection] = []
    skipped = 0
    for values in reader:
        if not values or not any(v.strip() for v in values):
            continue
        row = {k: (values[i] if i < len(values) else None) for i, k in enumerate(keys)}
        det = _row_to_detection(row)
        if det is None:
            skipped += 1
            continue
        out.append(det)

    if skipped:
        logger.debug("[firms] dropped %d rows without usable coordinates", skipped)
    return out


# ══════════════════════════════════════════════════════════════
# Confidence scoring
# ══════════════════════════════════════════════════════════════

_CONFIDENCE_LABELS: Dict[str, float] = {
    "high": 0.90,
    "h": 0.90,
    "nominal": 0.75,
    "n": 0.75,
    "low": 0.50,
    "l": 0.50,
}


def confidence_score(det: Detection) -> float:
    """
    Categorical label if present, otherwise brightness / 400 capped at 1.0.
    VIIRS rows have no "brightness" column, so bright_ti4 stands in for it.
    """
    label = str(det.confidence or "").strip().lower()
    if label in _CONFIDENCE_LABELS:
        return _CONFIDENCE_LABELS[label]

    brightness = det.brightness or det.bright_ti4 or 0.0
    return max(0.0, min(brightness / 400.0, 1.0))


# ══════════════════════════════════════════════════════════════
# Feed client
# ══════════════════════════════════════════════════════════════

class FirmsClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        source: str,
        area: str,
        days: int = 1,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base = base_url.rstrip("/")
        self.source = source
        self.area = area
        self.days = max(1, int(days))
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def url(self) -> str:
        return f"{self.base}/{self.api_key}/{self.source}/{self.area}/{self.days}"

    async def fetch_csv(self) -> str:
        if not self.api_key:
            raise FeedFetchError(
                "NASA_FIRMS_API_KEY not set. Get one from https://firms.modaps.eosdis.nasa.gov/api/"
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                r = await client.get(self.url(), headers={"User-Agent": "rakshak/firms"})
        except httpx.HTTPError as e:
            raise FeedFetchError(f"FIRMS request failed: {e!r}") from e

        if r.status_code >= 400:
            raise FeedFetchError(f"FIRMS API error: {r.status_code} {r.text[:200]}")

        # FIRMS answers bad keys / sources with a 200 and a plain-text message.
        text = r.text
        if text.lstrip().lower().startswith("invalid"):
            raise FeedFetchError(f"FIRMS API rejected request: {text[:200]}")
        return text
