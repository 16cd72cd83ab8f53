# rental_aggregator/validation.py
"""
Required-field and range checks for canonical listings.

All rules are evaluated; violations accumulate (no short-circuit):
  1. id, source, title non-empty
  2. price, if set, is a number >= 0
  3. coordinates.lat, if set, in [-90, 90]; coordinates.lng, if set, in [-180, 180]
  4. size / rooms, if set, > 0

validate() never raises and has no side effects. The caller decides whether
an invalid listing is skipped, logged or raised as ValidationError.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List

from .models import CanonicalListing


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and not math.isnan(v)


def _check_range(errors: List[str], name: str, value: Any, lo: float, hi: float) -> None:
    if value is None:
        return
    if not _is_number(value) or not lo <= value <= hi:
        errors.append(f"Invalid {name}: {value!r} (expected {lo:g}..{hi:g})")


def validate(listing: CanonicalListing) -> ValidationResult:
    errors: List[str] = []

    for name in ("id", "source", "title"):
        if not (getattr(listing, name, None) or "").strip():
            errors.append(f"Missing required field: {name}")

    price = listing.price
    if price is not None and (not _is_number(price) or price < 0):
        errors.append(f"Invalid price value: {price!r}")

    coords = listing.coordinates
    if coords is not None:
        _check_range(errors, "latitude", coords.lat, -90, 90)
        _check_range(errors, "longitude", coords.lng, -180, 180)

    for name in ("size", "rooms"):
        v = getattr(listing, name)
        if v is not None and (not _is_number(v) or v <= 0):
            errors.append(f"Invalid {name} value: {v!r}")

    return ValidationResult(valid=not errors, errors=errors)
