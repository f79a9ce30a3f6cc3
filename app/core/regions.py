# app/core/regions.py
"""
Coarse Indian region lookup for detections.

Used by the FIRMS resolver to label a hotspot with a named region until a
reverse geocoder is wired in. Order matters only where boxes overlap: the
first matching entry wins.
"""
from __future__ import annotations

from typing import List, Tuple


FALLBACK_REGION = "India"

# (name, (minLat, maxLat), (minLon, maxLon)); bounds are inclusive.
_REGION_BOUNDS: List[Tuple[str, Tuple[float, float], Tuple[float, float]]] = [
    ("Uttarakhand", (29.0, 30.5), (78.0, 81.0)),
    ("Himachal Pradesh", (31.0, 33.0), (75.0, 79.0)),
    ("Madhya Pradesh", (21.0, 24.0), (74.0, 82.0)),
    ("Rajasthan", (23.0, 29.0), (68.0, 76.0)),
    ("Gujarat", (20.0, 24.0), (68.0, 73.0)),
    ("Maharashtra", (16.0, 23.0), (72.0, 81.0)),
    ("Andhra Pradesh", (13.0, 19.0), (77.0, 85.0)),
    ("Karnataka", (11.0, 18.0), (74.0, 79.0)),
    ("Tamil Nadu", (8.0, 13.0), (76.0, 81.0)),
    ("Kerala", (8.0, 12.0), (74.0, 77.0)),
]


def _contains(bounds_lat: Tuple[float, float], bounds_lon: Tuple[float, float], lat: float, lon: float) -> bool:
    return bounds_lat[0] <= lat <= bounds_lat[1] and bounds_lon[0] <= lon <= bounds_lon[1]


def region_for_point(lat: float, lon: float) -> str:
    """
    Return the first region whose box contains (lat, lon), else the fallback.

    >>> region_for_point(30.0, 79.0)
    'Uttarakhand'
    >>> region_for_point(22.0, 70.0)
    'Gujarat'
    >>> region_for_point(0.5, 0.5)
    'India'
    """
    for name, bounds_lat, bounds_lon in _REGION_BOUNDS:
        if _contains(bounds_lat, bounds_lon, lat, lon):
            return name
    return FALLBACK_REGION


def region_names() -> List[str]:
    return [name for name, _, _ in _REGION_BOUNDS]
