# rental_aggregator/db/backends.py
"""
Document backends used by ListingStore.

A backend is a set of keyed collections supporting:
  get / set / partial update by key
  query with equality + range filters, one ordering, limit/offset
  batch_update: one atomic multi-document update, re-checking guard filters
  add: append-only insert (stats / error sinks)

MemoryBackend keeps everything in-process (tests, dry runs).
SupabaseBackend maps collections to tables through supabase-py.
"""
from __future__ import annotations

import copy
import logging
import operator
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from ..errors import PersistenceFailure
from .supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

KEY_FIELD = "id"

# rows per request when a Supabase query has no limit (PostgREST default max-rows)
PAGE_SIZE = 1000


@dataclass(frozen=True)
class Filter:
    field: str
    op: str  # "==" | "<" | "<=" | ">" | ">=" | "in"
    value: Any


_COMPARE: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda v, allowed: v in allowed,
}


class DocumentBackend(ABC):
    def connect(self) -> None:
        """Acquire connections/clients. Default: nothing to do."""

    def close(self) -> None:
        """Release connections/clients. Default: nothing to do."""

    @abstractmethod
    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, key: str, patch: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def batch_update(
        self,
        collection: str,
        keys: Iterable[str],
        patch: Dict[str, Any],
        guards: Sequence[Filter] = (),
    ) -> int:
        """Apply `patch` to every doc in `keys` still matching `guards`; return count."""

    @abstractmethod
    def add(self, collection: str, doc: Dict[str, Any]) -> None:
        ...


# -----------------------------------------------------------------------------
# In-memory
# -----------------------------------------------------------------------------

def _matches(doc: Dict[str, Any], f: Filter) -> bool:
    v = doc.get(f.field)
    if v is None and f.op != "==":
        return False
    try:
        return bool(_COMPARE[f.op](v, f.value))
    except TypeError:
        return False


class MemoryBackend(DocumentBackend):
    """
    Thread-safe in-process backend. Each operation holds the lock only for
    itself; there is no cross-operation transaction.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _col(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._col(collection).get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        with self._lock:
            self._col(collection)[key] = copy.deepcopy(doc)

    def update(self, collection: str, key: str, patch: Dict[str, Any]) -> None:
        with self._lock:
            doc = self._col(collection).get(key)
            if doc is None:
                raise PersistenceFailure(f"update of missing document {collection}/{key}")
            doc.update(copy.deepcopy(patch))

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            docs = [
                copy.deepcopy(d)
                for d in self._col(collection).values()
                if all(_matches(d, f) for f in filters)
            ]
        if order_by:
            present = [d for d in docs if d.get(order_by) is not None]
            missing = [d for d in docs if d.get(order_by) is None]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            docs = present + missing
        end = offset + limit if limit is not None else None
        return docs[offset:end]

    def batch_update(
        self,
        collection: str,
        keys: Iterable[str],
        patch: Dict[str, Any],
        guards: Sequence[Filter] = (),
    ) -> int:
        count = 0
        with self._lock:
            col = self._col(collection)
            for key in keys:
                doc = col.get(key)
                if doc is None or not all(_matches(doc, g) for g in guards):
                    continue
                doc.update(copy.deepcopy(patch))
                count += 1
        return count

    def add(self, collection: str, doc: Dict[str, Any]) -> None:
        with self._lock:
            self._col(collection)[uuid.uuid4().hex] = copy.deepcopy(doc)

    def all(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._col(collection).values()]


# -----------------------------------------------------------------------------
# Supabase
# -----------------------------------------------------------------------------

_BUILDER_METHODS = {
    "==": "eq",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "in": "in_",
}


def _apply_filters(rb: Any, filters: Sequence[Filter]) -> Any:
    for f in filters:
        value = list(f.value) if f.op == "in" else f.value
        rb = getattr(rb, _BUILDER_METHODS[f.op])(f.field, value)
    return rb


class SupabaseBackend(DocumentBackend):
    """
    Collections are tables keyed by an "id" column. Documents are stored with
    their camelCase keys as column names (JSONB for nested values).
    """

    def __init__(self, client: Optional[Client] = None) -> None:
        self._client = client
        self._owns_client = client is None

    def connect(self) -> None:
        if self._client is None:
            self._client = get_supabase_client()

    def close(self) -> None:
        if self._owns_client:
            self._client = None

    @property
    def client(self) -> Client:
        if self._client is None:
            raise PersistenceFailure("Supabase backend is not connected (call connect() first)")
        return self._client

    @staticmethod
    def _execute(rb: Any, what: str) -> Any:
        try:
            return rb.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error("[backend] %s FAILED: %s: %s", what, type(e).__name__, e)
            raise PersistenceFailure(f"{what} failed: {type(e).__name__}: {e}") from e

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        rb = self.client.table(collection).select("*").eq(KEY_FIELD, key).limit(1)
        res = self._execute(rb, f"get {collection}/{key}")
        rows = getattr(res, "data", None) or []
        return dict(rows[0]) if rows else None

    def set(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        row = dict(doc)
        row[KEY_FIELD] = key
        rb = self.client.table(collection).upsert(row, on_conflict=KEY_FIELD)
        self._execute(rb, f"set {collection}/{key}")

    def update(self, collection: str, key: str, patch: Dict[str, Any]) -> None:
        rb = self.client.table(collection).update(patch).eq(KEY_FIELD, key)
        self._execute(rb, f"update {collection}/{key}")

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        def fetch(start: int, count: int) -> List[Dict[str, Any]]:
            # one fresh builder per request
            rb = _apply_filters(self.client.table(collection).select("*"), filters)
            if order_by:
                rb = rb.order(order_by, desc=descending)
            rb = rb.range(start, start + count - 1)
            res = self._execute(rb, f"query {collection} range={start}+{count}")
            return [dict(r) for r in (getattr(res, "data", None) or [])]

        if limit is not None:
            return fetch(offset, limit)

        # no limit: page until a short page
        rows: List[Dict[str, Any]] = []
        start = offset
        while True:
            page = fetch(start, PAGE_SIZE)
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    def batch_update(
        self,
        collection: str,
        keys: Iterable[str],
        patch: Dict[str, Any],
        guards: Sequence[Filter] = (),
    ) -> int:
        key_list = list(keys)
        if not key_list:
            return 0
        # single UPDATE ... WHERE id IN (...) AND <guards>: atomic on the server
        rb = self.client.table(collection).update(patch).in_(KEY_FIELD, key_list)
        rb = _apply_filters(rb, guards)
        res = self._execute(rb, f"batch_update {collection} n={len(key_list)}")
        return len(getattr(res, "data", None) or [])

    def add(self, collection: str, doc: Dict[str, Any]) -> None:
        rb = self.client.table(collection).insert(doc)
        self._execute(rb, f"add {collection}")
