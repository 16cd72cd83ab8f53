from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .base import RecordSource
from .types import RawRecord, SourceConfig


class JsonFileSource(RecordSource):
    """
    Raw records exported by the scraping layer to disk.

    records file: JSON list of raw records (or {"items": [...]})
    details file: optional JSON object {source_id: detail record}
    """

    def __init__(self, path: Path, *, details_path: Optional[Path] = None) -> None:
        self.path = Path(path)
        self.details_path = Path(details_path) if details_path else None
        self._details: Optional[Dict[str, Any]] = None

    @staticmethod
    def _load(path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    def fetch_records(self, cfg: SourceConfig) -> List[RawRecord]:
        data = self._load(self.path)
        if isinstance(data, Mapping):
            data = data.get("items") or []
        if not isinstance(data, list):
            raise ValueError(f"{self.path}: expected a JSON list of records")
        return [r for r in data if isinstance(r, Mapping)][: cfg.limit]

    def fetch_detail(self, source_id: str) -> Optional[RawRecord]:
        if self.details_path is None:
            return None
        if self._details is None:
            data = self._load(self.details_path)
            if not isinstance(data, Mapping):
                raise ValueError(f"{self.details_path}: expected a JSON object keyed by source id")
            self._details = dict(data)
        detail = self._details.get(str(source_id))
        if detail is None:
            raise LookupError(f"no detail record for {source_id}")
        return detail
