"""
Utility functions shared by the EXIF codec and the metadata store.
"""

import datetime
from typing import Any, Optional, Sequence


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def decode_exif_text(value: Any) -> Optional[str]:
    """
    Decode an EXIF ASCII value into a clean string.

    Args:
        value: bytes or str as stored in an IFD

    Returns:
        Stripped string, or None for empty/missing values
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        text = value.decode('utf-8', errors='replace')
    elif isinstance(value, str):
        text = value
    else:
        return None
    text = text.replace('\x00', '').strip()
    return text or None


def encode_exif_text(value: str) -> bytes:
    return value.encode('utf-8')


def is_rational(value: Any) -> bool:
    return (
        isinstance(value, (tuple, list))
        and len(value) == 2
        and all(isinstance(v, int) for v in value)
    )


def rational_to_float(value: Any) -> Optional[float]:
    """
    Convert an EXIF rational (numerator, denominator) into a float.

    Returns:
        Float value, or None for malformed rationals and zero denominators
    """
    if not is_rational(value):
        return None
    numerator, denominator = value
    if denominator == 0:
        return None
    return numerator / denominator


def rational_to_string(value: Any) -> Optional[str]:
    """Render a rational literally, e.g. (1, 250) -> '1/250' and (2, 1) -> '2'."""
    if not is_rational(value):
        return None
    numerator, denominator = value
    if denominator == 0:
        return None
    if denominator == 1:
        return str(numerator)
    return f"{numerator}/{denominator}"


def first_int(value: Any) -> Optional[int]:
    """First integer of a scalar or sequence EXIF value."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, Sequence) and not isinstance(value, (bytes, str)) and value:
        return first_int(value[0])
    return None
