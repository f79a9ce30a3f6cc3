from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def minutes_ago_iso(minutes: float) -> str:
    return to_iso(utc_now() - timedelta(minutes=minutes))


def epoch_ms() -> int:
    return int(utc_now().timestamp() * 1000)
