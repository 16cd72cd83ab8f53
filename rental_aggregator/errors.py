# rental_aggregator/errors.py
"""
Error kinds raised by the aggregation core.

  UnsupportedSourceError  unknown source tag handed to the normalizer
  ValidationError         canonical listing violates required fields / ranges
  UnderivableIdError      no native id and nothing to hash (id policy "fail")
  EnrichmentFailure       detail fetch failed; base record stays stored
  PersistenceFailure      a store/backend operation failed
  SourceFetchFailure      the raw-record fetch for a whole run failed
"""
from __future__ import annotations

from typing import Sequence


class AggregatorError(Exception):
    """Base class for every error raised by the aggregation core."""


class UnsupportedSourceError(AggregatorError):
    def __init__(self, source: str) -> None:
        super().__init__(f"Unknown source: {source!r}")
        self.source = source


class ValidationError(AggregatorError):
    def __init__(self, errors: Sequence[str], listing_id: str | None = None) -> None:
        self.errors = list(errors)
        self.listing_id = listing_id
        super().__init__(
            f"Validation failed for {listing_id or '<no id>'}: {'; '.join(self.errors)}"
        )


class UnderivableIdError(ValidationError):
    def __init__(self, source: str) -> None:
        super().__init__([f"Cannot derive id: record has no native id, url or title ({source})"])
        self.source = source


class EnrichmentFailure(AggregatorError):
    def __init__(self, listing_id: str, message: str) -> None:
        super().__init__(f"Enrichment failed for {listing_id}: {message}")
        self.listing_id = listing_id


class PersistenceFailure(AggregatorError):
    pass


class SourceFetchFailure(AggregatorError):
    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"Fetching raw records failed for {source}: {message}")
        self.source = source
