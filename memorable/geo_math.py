"""
Great-circle distance and degrees/minutes/seconds conversions.
"""

import math
from typing import Optional, Sequence, Tuple

EARTH_RADIUS_M = 6371000

Rational = Tuple[int, int]
DmsRationals = Tuple[Rational, Rational, Rational]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (12.5 -> 13)."""
    return int(math.floor(value + 0.5))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two WGS84 points.

    Args:
        lat1: Latitude of the first point in decimal degrees
        lon1: Longitude of the first point in decimal degrees
        lat2: Latitude of the second point in decimal degrees
        lon2: Longitude of the second point in decimal degrees

    Returns:
        Distance in meters (unrounded)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_meters(lat1: float, lon1: float,
                    lat2: Optional[float], lon2: Optional[float]) -> float:
    """
    Haversine distance rounded to the nearest meter.

    A target without coordinates is infinitely far away.
    """
    if lat2 is None or lon2 is None:
        return math.inf
    return round_half_up(haversine_distance(lat1, lon1, lat2, lon2))


def to_dms_rationals(coordinate: float) -> DmsRationals:
    """
    Convert a decimal-degree value into EXIF GPS rationals.

    Minutes and seconds are floor-truncated, seconds to hundredths. The sign is
    dropped; use hemisphere_ref() for it.

    Args:
        coordinate: Decimal degrees

    Returns:
        ((degrees, 1), (minutes, 1), (seconds * 100, 100))
    """
    absolute = abs(coordinate)
    degrees = math.floor(absolute)
    minutes_not_truncated = (absolute - degrees) * 60
    minutes = math.floor(minutes_not_truncated)
    seconds = math.floor((minutes_not_truncated - minutes) * 60 * 100)

    return ((degrees, 1), (minutes, 1), (seconds, 100))


def from_dms_rationals(dms: Sequence[Sequence[int]], ref: Optional[str] = None) -> float:
    """
    Convert EXIF GPS rationals back into signed decimal degrees.

    Args:
        dms: Three (numerator, denominator) pairs
        ref: Hemisphere reference letter; 'S' and 'W' make the result negative

    Returns:
        Decimal degrees

    Raises:
        ValueError: If the rationals are malformed or have a zero denominator
    """
    if len(dms) != 3:
        raise ValueError(f"Expected 3 rationals, got {len(dms)}")

    parts = []
    for numerator, denominator in dms:
        if denominator == 0:
            raise ValueError("Zero denominator in GPS rational")
        parts.append(numerator / denominator)

    value = parts[0] + parts[1] / 60 + parts[2] / 3600
    if ref is not None and ref.upper() in ('S', 'W'):
        value = -value
    return value


def hemisphere_ref(coordinate: float, is_latitude: bool) -> str:
    """Hemisphere letter for a signed coordinate. Zero maps to N/E."""
    if is_latitude:
        return 'N' if coordinate >= 0 else 'S'
    return 'E' if coordinate >= 0 else 'W'


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    try:
        return -90 <= float(latitude) <= 90 and -180 <= float(longitude) <= 180
    except (TypeError, ValueError):
        return False
