from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from ..config import DETAIL_FETCH_DELAY_S, INACTIVE_THRESHOLD_DAYS

# Unmodified result of a source-specific fetch, in that source's native shape
RawRecord = Mapping[str, Any]


@dataclass(frozen=True)
class SourceConfig:
    source: str
    query: str = ""
    limit: int = 50
    fetch_details: bool = True
    detail_delay_s: float = DETAIL_FETCH_DELAY_S
    inactive_days: int = INACTIVE_THRESHOLD_DAYS
    # passed through untouched to the record source (city id, category, ...)
    params: Dict[str, Any] = field(default_factory=dict)
