from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..config import ID_FALLBACK_POLICY
from ..models import CanonicalListing
from .types import RawRecord, SourceConfig


class BaseExtractor(ABC):
    """One source's mapping from its raw record shape to a CanonicalListing."""

    source: str = ""
    base_url: str = ""

    def __init__(self, id_policy: Optional[str] = None) -> None:
        self.id_policy = id_policy or ID_FALLBACK_POLICY

    @abstractmethod
    def extract(self, raw: RawRecord) -> CanonicalListing:
        """Return the canonical listing for one raw record. Must be deterministic."""

    def merge_detail(self, raw: RawRecord, detail: RawRecord) -> Dict[str, Any]:
        """
        Fold a detail-page record into the list-stage raw record.
        Default: detail values win where present.
        """
        merged = dict(raw)
        merged.update({k: v for k, v in detail.items() if v not in (None, "", [], {})})
        return merged


class RecordSource(ABC):
    """External collaborator that produces raw records (the scraping layer)."""

    @abstractmethod
    def fetch_records(self, cfg: SourceConfig) -> List[RawRecord]:
        """Return raw records (list stage). May raise on network/parse errors."""

    def fetch_detail(self, source_id: str) -> Optional[RawRecord]:
        """
        Optional enrichment: fetch the detail record for one listing.
        Default: None (source has no detail stage).
        """
        return None
