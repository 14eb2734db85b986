"""
PK (Point Kilométrique) text format: ``PK<km>+<meters on 3 digits>``.
"""

import math
import re

from src.core.errors import InvalidRecord

_PK_PATTERN = re.compile(r"^\s*PK\s*(\d+)\s*\+\s*(\d{1,3})\s*$", re.IGNORECASE)


def format_pk(pk_km: float) -> str:
    """
    Render a kilometric position, e.g. ``123.5 -> "PK123+500"``.

    Meters are rounded to the nearest unit; 999.6 m carries into the next
    kilometre instead of producing ``+1000``.
    """
    if not math.isfinite(pk_km) or pk_km < 0:
        raise ValueError(f"PK must be a finite, non-negative number of km: {pk_km}")

    total_meters = int(round(pk_km * 1000))
    km, meters = divmod(total_meters, 1000)
    return f"PK{km}+{meters:03d}"


def parse_pk(text: str) -> float:
    """Inverse of format_pk: ``"PK123+500" -> 123.5``."""
    match = _PK_PATTERN.match(text or "")
    if not match:
        raise InvalidRecord(f"Malformed PK text: {text!r}")
    km, meters = match.groups()
    return int(km) + int(meters) / 1000.0
