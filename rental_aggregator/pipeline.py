from __future__ import annotations

import argparse
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from . import config
from .db.backends import DocumentBackend, MemoryBackend, SupabaseBackend
from .db.run_stats import RunStats
from .errors import (
    AggregatorError,
    EnrichmentFailure,
    PersistenceFailure,
    SourceFetchFailure,
    UnsupportedSourceError,
    ValidationError,
)
from .models import CanonicalListing
from .normalize import preview
from .sources.base import BaseExtractor, RecordSource
from .sources.file import JsonFileSource
from .sources.http import HttpJsonSource
from .sources.registry import EXTRACTORS, get_extractor
from .sources.types import RawRecord, SourceConfig
from .storage import ListingStore
from .validation import validate

logger = logging.getLogger(__name__)

Sleep = Callable[[float], None]


def _record_label(raw: Mapping[str, Any]) -> str:
    for key in ("id", "offer_id", "url", "title", "offer_title"):
        v = raw.get(key)
        if v not in (None, ""):
            return f"{key}={v}"
    return "<unidentified>"


def _write_stats(store: ListingStore, stats: RunStats) -> None:
    try:
        store.record_run_stats(stats)
    except PersistenceFailure as e:
        logger.error("[pipeline] stats write FAILED source=%s: %s", stats.source, e)


def _fail_run(
    store: ListingStore,
    stats: RunStats,
    error: BaseException,
    context: Dict[str, Any],
) -> None:
    """Per-run failure: error sink + statistics first, the caller re-raises."""
    stats.errors += 1
    logger.error("[pipeline] RUN_FAILED source=%s | %s: %s", stats.source, type(error).__name__, error)
    store.record_error(error, context)
    stats.finish(store.now())
    _write_stats(store, stats)


# -----------------------------------------------------------------------------
# One record
# -----------------------------------------------------------------------------

def _enrich(
    store: ListingStore,
    record_source: RecordSource,
    extractor: BaseExtractor,
    raw: RawRecord,
    listing: CanonicalListing,
    cfg: SourceConfig,
    stats: RunStats,
    sleep: Sleep,
) -> None:
    """
    Best-effort detail fetch, stored as a side upsert under the same id.
    A failure flags the listing (enriched=false) and keeps the base record.
    """
    try:
        detail = record_source.fetch_detail(listing.source_id)
    except Exception as e:
        _enrichment_failed(store, stats, EnrichmentFailure(listing.id, f"{type(e).__name__}: {e}"))
        return

    if detail is None:
        stats.details_skipped += 1
        return

    try:
        enriched = extractor.extract(extractor.merge_detail(raw, detail))
        if enriched.id != listing.id:
            raise EnrichmentFailure(listing.id, f"detail record resolved to different id {enriched.id}")
        check = validate(enriched)
        if not check.valid:
            raise EnrichmentFailure(listing.id, "; ".join(check.errors))
        store.upsert(enriched)
        store.record_enrichment(listing.id)
    except EnrichmentFailure as e:
        _enrichment_failed(store, stats, e)
        return
    except Exception as e:
        _enrichment_failed(store, stats, EnrichmentFailure(listing.id, f"{type(e).__name__}: {e}"))
        return

    stats.details_fetched += 1
    logger.info("[pipeline] enriched id=%s", listing.id)

    if cfg.detail_delay_s > 0:
        sleep(cfg.detail_delay_s)


def _enrichment_failed(store: ListingStore, stats: RunStats, failure: EnrichmentFailure) -> None:
    stats.details_skipped += 1
    stats.errors += 1
    logger.warning("[pipeline] ENRICH_FAILED %s", failure)
    try:
        store.record_enrichment(failure.listing_id, error=str(failure))
    except PersistenceFailure as e:
        # already counted above; the base record stays as upserted
        logger.error("[pipeline] enrichment flag write FAILED id=%s: %s", failure.listing_id, e)


def _process_record(
    store: ListingStore,
    record_source: RecordSource,
    extractor: BaseExtractor,
    raw: RawRecord,
    cfg: SourceConfig,
    stats: RunStats,
    sleep: Sleep,
) -> None:
    listing = extractor.extract(raw)

    result = validate(listing)
    if not result.valid:
        raise ValidationError(result.errors, listing.id)

    outcome = store.upsert(listing)
    if outcome.action == "created":
        stats.new_items += 1
    else:
        stats.updated_items += 1

    if cfg.fetch_details and listing.source_id:
        _enrich(store, record_source, extractor, raw, listing, cfg, stats, sleep)
    else:
        stats.details_skipped += 1


# -----------------------------------------------------------------------------
# One run
# -----------------------------------------------------------------------------

def run_source(
    store: ListingStore,
    record_source: RecordSource,
    cfg: SourceConfig,
    *,
    id_policy: Optional[str] = None,
    sleep: Sleep = time.sleep,
) -> RunStats:
    """
    One aggregation pass for one source:
    fetch -> (normalize -> validate -> upsert -> enrich) per record -> sweep -> stats.

    Records are processed sequentially. Per-record failures are counted and
    the run continues; already-upserted records stay committed. Run-level
    failures (unknown source, fetch failure) are written to the error sink
    and the stats collection, then raised.
    """
    stats = RunStats(source=cfg.source, query=cfg.query, start_time=store.now())
    context: Dict[str, Any] = {"source": cfg.source, "query": cfg.query}
    logger.info("[pipeline] start source=%s query=%r limit=%d", cfg.source, cfg.query, cfg.limit)

    try:
        extractor = get_extractor(cfg.source, id_policy=id_policy)
    except UnsupportedSourceError as e:
        _fail_run(store, stats, e, {**context, "operation": "get_extractor"})
        raise

    try:
        records = list(record_source.fetch_records(cfg))
    except Exception as e:
        _fail_run(store, stats, e, {**context, "operation": "fetch_records"})
        raise SourceFetchFailure(cfg.source, f"{type(e).__name__}: {e}") from e

    stats.total_found = len(records)
    logger.info("[pipeline] fetched source=%s records=%d", cfg.source, len(records))

    if not records:
        # an empty upstream page must not deactivate the whole source
        stats.finish(store.now())
        _write_stats(store, stats)
        logger.info(stats.summary_line())
        return stats

    for idx, raw in enumerate(records, 1):
        label = _record_label(raw)
        try:
            _process_record(store, record_source, extractor, raw, cfg, stats, sleep)
        except ValidationError as e:
            stats.errors += 1
            logger.warning(
                "[pipeline] INVALID %d/%d source=%s %s | %s",
                idx, len(records), cfg.source, label, "; ".join(e.errors),
            )
        except Exception as e:
            stats.errors += 1
            logger.error(
                "[pipeline] RECORD_ERROR %d/%d source=%s %s | %s: %s",
                idx, len(records), cfg.source, label, type(e).__name__, e,
            )
            store.record_error(e, {**context, "record": label, "operation": "process_record"})

    try:
        stats.deactivated = store.sweep(cfg.source, timedelta(days=cfg.inactive_days))
    except PersistenceFailure as e:
        stats.deactivated = 0
        stats.errors += 1
        logger.error("[pipeline] SWEEP_FAILED source=%s | %s", cfg.source, e)
        store.record_error(e, {**context, "operation": "sweep"})

    stats.finish(store.now())
    _write_stats(store, stats)
    logger.info(stats.summary_line())
    return stats


def run_sources(
    store: ListingStore,
    jobs: Sequence[Tuple[RecordSource, SourceConfig]],
    *,
    max_workers: Optional[int] = None,
    id_policy: Optional[str] = None,
    sleep: Sleep = time.sleep,
) -> Dict[str, Union[RunStats, AggregatorError]]:
    """
    Run several sources concurrently, one thread per source run.
    Returns source -> RunStats, or the run-level error that source raised.
    """
    if not jobs:
        return {}

    results: Dict[str, Union[RunStats, AggregatorError]] = {}
    with ThreadPoolExecutor(max_workers=max_workers or len(jobs)) as pool:
        futures = {
            pool.submit(run_source, store, src, cfg, id_policy=id_policy, sleep=sleep): cfg.source
            for src, cfg in jobs
        }
        for fut in as_completed(futures):
            source = futures[fut]
            try:
                results[source] = fut.result()
            except AggregatorError as e:
                logger.error("[pipeline] source=%s failed: %s", source, e)
                results[source] = e
    return results


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------

def _build_record_source(args: argparse.Namespace) -> RecordSource:
    if args.records_file:
        return JsonFileSource(args.records_file, details_path=args.details_file)
    return HttpJsonSource(args.feed_url, detail_url_template=args.detail_url_template)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Normalize raw rental listings of one source and upsert them into the listing store."
    )
    parser.add_argument("--source", required=True, choices=sorted(EXTRACTORS), help="Source tag.")
    inp = parser.add_mutually_exclusive_group(required=True)
    inp.add_argument("--records-file", type=Path, help="JSON list of raw records.")
    inp.add_argument("--feed-url", help="URL of a JSON feed of raw records.")
    parser.add_argument("--details-file", type=Path, default=None, help="JSON object {source_id: detail record}.")
    parser.add_argument("--detail-url-template", default=None, help="e.g. https://host/detail/{source_id}")
    parser.add_argument("--query", default="", help="Search query passed to the record source.")
    parser.add_argument("--limit", type=int, default=50, help="Max raw records per run.")
    parser.add_argument("--no-details", action="store_true", help="Skip the detail/enrichment stage.")
    parser.add_argument("--inactive-days", type=int, default=config.INACTIVE_THRESHOLD_DAYS)
    parser.add_argument(
        "--id-fallback",
        choices=[config.ID_POLICY_FAIL, config.ID_POLICY_RANDOM],
        default=config.ID_FALLBACK_POLICY,
        help="Records without native id, url or title: skip (fail) or assign a random id.",
    )
    parser.add_argument("--memory", action="store_true", help="Use an in-memory store (nothing persisted).")
    parser.add_argument("--preview", action="store_true", help="Only print normalized listings, write nothing.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    cfg = SourceConfig(
        source=args.source,
        query=args.query,
        limit=args.limit,
        fetch_details=not args.no_details,
        inactive_days=args.inactive_days,
    )
    record_source = _build_record_source(args)

    if args.preview:
        try:
            records = record_source.fetch_records(cfg)
        except Exception as e:
            print(f"[pipeline] FAILED source={cfg.source}: {type(e).__name__}: {e}")
            return 1
        for listing in preview(records, cfg.source, id_policy=args.id_fallback):
            print(json.dumps(listing.to_document(), ensure_ascii=False))
        return 0

    backend: DocumentBackend = MemoryBackend() if args.memory else SupabaseBackend()
    with ListingStore(backend) as store:
        try:
            stats = run_source(store, record_source, cfg, id_policy=args.id_fallback)
        except AggregatorError as e:
            print(f"[pipeline] FAILED source={cfg.source}: {e}")
            return 1

    print(stats.summary_line())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
