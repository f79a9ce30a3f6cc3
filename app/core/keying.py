from __future__ import annotations

import base64
import hashlib
import random
import string
from typing import Any

import orjson

from app.core.time import epoch_ms


_ALNUM = string.ascii_lowercase + string.digits


def _orjson_dumps(obj: Any) -> bytes:
    return orjson.dumps(
        obj,
        option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS,
    )


def sha256_b32(data: bytes) -> str:
    h = hashlib.sha256(data).digest()
    # URL-safe base32-ish: we use base64 urlsafe with no padding for brevity
    return base64.urlsafe_b64encode(h).decode("ascii").rstrip("=")


def _suffix(n: int = 9) -> str:
    return "".join(random.choice(_ALNUM) for _ in range(n))


def new_event_id() -> str:
    return f"evt_{epoch_ms()}_{_suffix()}"


def new_alert_id() -> str:
    return f"alrt_{epoch_ms()}_{_suffix()}"


def firms_event_id(acq_date: str, acq_time: str) -> str:
    """
    Acquisition time + random suffix. Unique within a pass, but re-ingesting
    the same window yields new ids.
    """
    return f"evt_firms_{acq_date}_{acq_time}_{_suffix()}"


def stable_firms_event_id(
    *,
    satellite: str,
    acq_date: str,
    acq_time: str,
    latitude: float,
    longitude: float,
) -> str:
    """
    Deterministic id from the detection's stable fields. Coordinates are
    rounded to 4 decimals (~11 m) so float noise between feed pulls collapses.
    """
    payload = {
        "satellite": satellite,
        "acq_date": acq_date,
        "acq_time": acq_time,
        "lat": round(float(latitude), 4),
        "lng": round(float(longitude), 4),
    }
    return f"evt_firms_{sha256_b32(_orjson_dumps(payload))[:24]}"


def alert_id_for_event(event_id: str) -> str:
    return f"alrt_{event_id}"
