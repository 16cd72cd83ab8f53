from __future__ import annotations

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional

from .config import INACTIVE_THRESHOLD_DAYS, REACTIVATE_ON_UPDATE
from .db.backends import DocumentBackend, Filter
from .db.run_stats import RunStats, dt_iso
from .errors import PersistenceFailure
from .models import CanonicalListing, ListingQuery, StoredListing, UpsertResult

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Collections
# -----------------------------------------------------------------------------

LISTINGS = "rental_listings"
STATS = "scraping_stats"
ERRORS = "scraping_errors"

# Never overwritten by an update: the entity's creation identity
IDENTITY_FIELDS = frozenset({"id", "source", "firstSeen"})

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return str(value)


class ListingStore:
    """
    Upsert-by-id persistence with lifecycle tracking.

    Lifecycle of isActive:
      created (true) -> re-seen (true) -> not re-seen within the window:
      sweep sets false -> re-seen again: set back to true when
      reactivate_on_update is on (the default).

    The store is constructed with an explicit backend and must be opened
    before use (or used as a context manager). No module-level client.
    """

    def __init__(
        self,
        backend: DocumentBackend,
        *,
        clock: Optional[Clock] = None,
        reactivate_on_update: bool = REACTIVATE_ON_UPDATE,
    ) -> None:
        self.backend = backend
        self._clock = clock or _utc_now
        self.reactivate_on_update = reactivate_on_update

    # ---- lifecycle ----------------------------------------------------------

    def open(self) -> "ListingStore":
        self.backend.connect()
        return self

    def close(self) -> None:
        self.backend.close()

    def __enter__(self) -> "ListingStore":
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    def now(self) -> datetime:
        return self._clock()

    # ---- listings -----------------------------------------------------------

    def upsert(self, listing: CanonicalListing) -> UpsertResult:
        doc = listing.to_document()
        now = dt_iso(self.now())
        existing = self.backend.get(LISTINGS, listing.id)

        if existing is None:
            doc.update(firstSeen=now, lastSeen=now, scrapedAt=now, isActive=True)
            self.backend.set(LISTINGS, listing.id, doc)
            logger.info("[store] created id=%s source=%s", listing.id, listing.source)
            return UpsertResult(action="created", id=listing.id)

        if existing.get("source") not in (None, listing.source):
            logger.warning(
                "[store] id=%s stored with source=%s, keeping it (incoming source=%s)",
                listing.id, existing.get("source"), listing.source,
            )

        patch = {k: v for k, v in doc.items() if k not in IDENTITY_FIELDS}
        patch.update(lastSeen=now, scrapedAt=now)
        if self.reactivate_on_update:
            patch["isActive"] = True
        self.backend.update(LISTINGS, listing.id, patch)
        logger.info("[store] updated id=%s source=%s", listing.id, listing.source)
        return UpsertResult(action="updated", id=listing.id)

    def get(self, listing_id: str) -> Optional[StoredListing]:
        doc = self.backend.get(LISTINGS, listing_id)
        return StoredListing.model_validate(doc) if doc is not None else None

    def query(self, filters: Optional[ListingQuery] = None) -> List[StoredListing]:
        """Filtered listings, most recently observed first."""
        q = filters or ListingQuery()
        conds: List[Filter] = []
        if q.source is not None:
            conds.append(Filter("source", "==", q.source))
        if q.is_active is not None:
            conds.append(Filter("isActive", "==", q.is_active))
        if q.min_price is not None:
            conds.append(Filter("price", ">=", q.min_price))
        if q.max_price is not None:
            conds.append(Filter("price", "<=", q.max_price))

        docs = self.backend.query(
            LISTINGS,
            conds,
            order_by="lastSeen",
            descending=True,
            limit=q.limit,
            offset=q.offset,
        )
        return [StoredListing.model_validate(d) for d in docs]

    def sweep(self, source: str, inactivity_window: Optional[timedelta] = None) -> int:
        """
        Flag active listings of `source` not seen since now - window as
        inactive. Returns the number deactivated.

        Read snapshot first, then one guarded batch update: a listing
        re-upserted in between no longer matches lastSeen < cutoff and
        stays active.
        """
        window = inactivity_window if inactivity_window is not None else timedelta(days=INACTIVE_THRESHOLD_DAYS)
        cutoff = dt_iso(self.now() - window)
        stale_filter = [
            Filter("source", "==", source),
            Filter("isActive", "==", True),
            Filter("lastSeen", "<", cutoff),
        ]

        stale = self.backend.query(LISTINGS, stale_filter)
        ids = [d["id"] for d in stale if d.get("id")]
        if not ids:
            return 0

        count = self.backend.batch_update(LISTINGS, ids, {"isActive": False}, guards=stale_filter)
        logger.info(
            "[store] sweep source=%s cutoff=%s candidates=%d deactivated=%d",
            source, cutoff, len(ids), count,
        )
        return count

    def record_enrichment(self, listing_id: str, error: Optional[str] = None) -> None:
        self.backend.update(
            LISTINGS,
            listing_id,
            {"enriched": error is None, "enrichmentError": error},
        )

    # ---- audit trail (append-only, never read back) -------------------------

    def record_run_stats(self, stats: RunStats) -> None:
        doc = stats.to_record()
        doc["timestamp"] = dt_iso(self.now())
        self.backend.add(STATS, doc)
        logger.info("[store] logged stats source=%s total_found=%d", stats.source, stats.total_found)

    def record_error(self, error: BaseException, context: Optional[Mapping[str, Any]] = None) -> None:
        doc = {
            "error": str(error),
            "errorType": type(error).__name__,
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            "context": _json_safe(dict(context or {})),
            "timestamp": dt_iso(self.now()),
        }
        try:
            self.backend.add(ERRORS, doc)
        except PersistenceFailure as e:
            logger.error("[store] record_error FAILED: %s | original error: %s", e, error)
            return
        logger.warning("[store] logged error: %s: %s", type(error).__name__, error)
