from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import requests

from .base import RecordSource
from .types import RawRecord, SourceConfig

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; rental-aggregator/0.1)"


def http_get_json(url: str, *, params: Optional[Dict[str, Any]] = None, timeout_s: int = 30) -> Any:
    r = requests.get(
        url,
        params=params,
        timeout=timeout_s,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    )
    r.raise_for_status()
    return r.json()


class HttpJsonSource(RecordSource):
    """
    Raw records served as JSON by the scraping layer.

    Feed: GET feed_url?q=<query>&limit=<limit>&<params>, answering either a
    list of records or {"items": [...]}.
    Detail: GET detail_url_template.format(source_id=...) -> one record.
    """

    def __init__(
        self,
        feed_url: str,
        *,
        detail_url_template: Optional[str] = None,
        items_key: str = "items",
        timeout_s: int = 30,
    ) -> None:
        self.feed_url = feed_url
        self.detail_url_template = detail_url_template
        self.items_key = items_key
        self.timeout_s = timeout_s

    def fetch_records(self, cfg: SourceConfig) -> List[RawRecord]:
        params: Dict[str, Any] = {"q": cfg.query, "limit": cfg.limit, **cfg.params}
        params = {k: v for k, v in params.items() if v not in (None, "")}

        data = http_get_json(self.feed_url, params=params, timeout_s=self.timeout_s)
        if isinstance(data, Mapping):
            data = data.get(self.items_key) or []
        if not isinstance(data, list):
            raise ValueError(f"Unexpected feed payload from {self.feed_url}: {type(data).__name__}")

        records = [r for r in data if isinstance(r, Mapping)]
        logger.info("[http] feed=%s records=%d", self.feed_url, len(records))
        return records[: cfg.limit]

    def fetch_detail(self, source_id: str) -> Optional[RawRecord]:
        if not self.detail_url_template:
            return None
        url = self.detail_url_template.format(source_id=quote(str(source_id), safe=""))
        data = http_get_json(url, timeout_s=self.timeout_s)
        if not isinstance(data, Mapping):
            raise ValueError(f"Unexpected detail payload from {url}: {type(data).__name__}")
        return data
