# rental_aggregator/extractors.py
"""
Field extractors: pure parsing of typed values out of raw source records.

None of these functions raise on malformed input. Anything that cannot be
parsed comes back as None (or the documented default) so a single odd field
never costs us the whole listing.

Rules:
  Price:   keep digits , . €  -> resolve German separators -> float
           "1.234,56 €" -> 1234.56   "1.200 €" -> 1200.0   "" / None -> None
  Size:    first number before m² / m2 / qm / quadratmeter
  Rooms:   first number before zimmer / raum / room ("2-Zimmer-Wohnung" -> 2.0)
  Type:    keyword search over title + description, first rule wins:
             zimmer | wg | flatshare   -> room
             haus | house              -> house
             büro | office | gewerbe   -> commercial
             otherwise                 -> apartment
  Images:  strings only, "//host/x" -> "https://host/x", ordered dedup, capped
  Ids:     native id, else sha256(url or title)[:12], else id policy
"""
from __future__ import annotations

import math
import random
import re
import string
import time
from hashlib import sha256
from typing import Any, Iterable, List, Mapping, Optional
from urllib.parse import urljoin

from .config import ID_POLICY_RANDOM, MAX_IMAGES
from .errors import UnderivableIdError
from .models import Coordinates, ListingType

ID_HASH_LENGTH = 12

_WS_RE = re.compile(r"\s+")
_PRICE_STRIP_RE = re.compile(r"[^\d,.€]")
_THOUSANDS_DOT_RE = re.compile(r"\d{1,3}(?:\.\d{3})+")
_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:m²|m2|qm|quadratmeter)", re.IGNORECASE)
_ROOMS_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*-?\s*(?:zimmer|raum|room)", re.IGNORECASE)

# Ordered: the first matching rule decides the type
_TYPE_KEYWORDS: tuple[tuple[ListingType, tuple[str, ...]], ...] = (
    ("room", ("zimmer", "wg", "flatshare")),
    ("house", ("haus", "house")),
    ("commercial", ("büro", "office", "gewerbe")),
)
DEFAULT_TYPE: ListingType = "apartment"


def clean_string(value: Any) -> str:
    if value is None:
        return ""
    return _WS_RE.sub(" ", str(value)).strip()


def to_float(value: Any) -> Optional[float]:
    """Lenient float coercion: numbers and numeric strings (decimal comma ok)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
    elif isinstance(value, str):
        s = value.strip().replace(",", ".")
        if not s:
            return None
        try:
            f = float(s)
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def parse_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return to_float(value)
    if not isinstance(value, str):
        return None

    s = _PRICE_STRIP_RE.sub("", value).replace("€", "").strip(".,")
    if not s:
        return None

    if "," in s and "." in s:
        # whichever separator comes last is the decimal one
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", "") if s.count(",") > 1 else s.replace(",", ".")
    elif _THOUSANDS_DOT_RE.fullmatch(s):
        s = s.replace(".", "")

    try:
        price = float(s)
    except ValueError:
        return None
    return price if math.isfinite(price) else None


def _first_positive_number(pattern: re.Pattern[str], text: Any) -> Optional[float]:
    if not text or not isinstance(text, str):
        return None
    m = pattern.search(text)
    if not m:
        return None
    n = to_float(m.group(1))
    return n if n is not None and n > 0 else None


def parse_size(text: Any) -> Optional[float]:
    return _first_positive_number(_SIZE_RE, text)


def parse_rooms(text: Any) -> Optional[float]:
    return _first_positive_number(_ROOMS_RE, text)


def extract_coordinates(raw: Mapping[str, Any]) -> Coordinates:
    """Explicit coordinate pair first, then dedicated latitude/longitude fields."""
    coords = raw.get("coordinates")
    if isinstance(coords, Mapping):
        lng = coords.get("lng") if "lng" in coords else coords.get("lon")
        return Coordinates(lat=to_float(coords.get("lat")), lng=to_float(lng))
    return Coordinates(
        lat=to_float(raw.get("geo_latitude")),
        lng=to_float(raw.get("geo_longitude")),
    )


def classify_property_type(title: Any, description: Any = "") -> ListingType:
    text = f"{clean_string(title)} {clean_string(description)}".lower()
    for listing_type, keywords in _TYPE_KEYWORDS:
        if any(k in text for k in keywords):
            return listing_type
    return DEFAULT_TYPE


def normalize_images(
    images: Any,
    *,
    base_url: Optional[str] = None,
    limit: int = MAX_IMAGES,
) -> List[str]:
    if isinstance(images, str):
        images = [images]
    if not isinstance(images, (list, tuple)):
        return []

    out: List[str] = []
    seen: set[str] = set()
    for img in images:
        if not isinstance(img, str):
            continue
        u = img.strip()
        if not u:
            continue
        if u.startswith("//"):
            u = "https:" + u
        elif base_url and not u.lower().startswith(("http://", "https://")):
            u = urljoin(base_url, u)
        if u in seen:
            continue
        seen.add(u)
        out.append(u)
        if len(out) >= limit:
            break
    return out


def hash_id(text: str, length: int = ID_HASH_LENGTH) -> str:
    return sha256(text.encode("utf-8")).hexdigest()[:length]


def _random_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"generated-{int(time.time() * 1000)}-{suffix}"


def derive_id(
    native_id: Any,
    candidates: Iterable[Any],
    *,
    policy: str,
    source: str,
) -> str:
    """
    Stable id for a raw record.

    - native id present      -> str(native id)
    - else first non-empty candidate (url, title, ...) -> hash_id(candidate)
    - else policy "random"   -> generated-<ms>-<random>   (not stable!)
    - else                   -> UnderivableIdError
    """
    if native_id is not None and not isinstance(native_id, bool):
        native = clean_string(native_id)
        if native:
            return native

    for c in candidates:
        text = clean_string(c)
        if text:
            return hash_id(text)

    if policy == ID_POLICY_RANDOM:
        return _random_id()
    raise UnderivableIdError(source)
