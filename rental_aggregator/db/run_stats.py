# rental_aggregator/db/run_stats.py
"""
One statistics record per aggregation run, appended to scraping_stats.
Pure observability: never read back by the pipeline.

Record shape:
  source, query, totalFound, newItems, updatedItems, errors,
  detailsFetched, detailsSkipped, deactivated,
  startTime, endTime, duration (milliseconds)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO string, so string order == time order."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class RunStats:
    source: str
    query: str = ""
    total_found: int = 0
    new_items: int = 0
    updated_items: int = 0
    errors: int = 0
    details_fetched: int = 0
    details_skipped: int = 0
    deactivated: int = 0
    start_time: datetime = field(default_factory=_utc_now)
    end_time: Optional[datetime] = None

    @property
    def processed(self) -> int:
        return self.new_items + self.updated_items

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    def finish(self, when: Optional[datetime] = None) -> "RunStats":
        self.end_time = when or _utc_now()
        return self

    def to_record(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "query": self.query,
            "totalFound": self.total_found,
            "newItems": self.new_items,
            "updatedItems": self.updated_items,
            "errors": self.errors,
            "detailsFetched": self.details_fetched,
            "detailsSkipped": self.details_skipped,
            "deactivated": self.deactivated,
            "startTime": dt_iso(self.start_time),
            "endTime": dt_iso(self.end_time),
            "duration": self.duration_ms,
        }

    def summary_line(self) -> str:
        # grep '[pipeline][summary]'
        return (
            f"[pipeline][summary]"
            f" source={self.source}"
            f" total_found={self.total_found}"
            f" new={self.new_items}"
            f" updated={self.updated_items}"
            f" details_fetched={self.details_fetched}"
            f" details_skipped={self.details_skipped}"
            f" deactivated={self.deactivated}"
            f" errors={self.errors}"
            f" duration_ms={self.duration_ms}"
        )
