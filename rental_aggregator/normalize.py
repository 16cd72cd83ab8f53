from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .errors import AggregatorError
from .models import CanonicalListing
from .sources.registry import get_extractor
from .sources.types import RawRecord

logger = logging.getLogger(__name__)


def normalize(
    raw: RawRecord,
    source: str,
    *,
    id_policy: Optional[str] = None,
) -> CanonicalListing:
    """
    Map one raw record of `source` into the canonical schema.

    Raises UnsupportedSourceError for unknown sources and UnderivableIdError
    when no id can be derived under the "fail" id policy. No side effects.
    """
    return get_extractor(source, id_policy=id_policy).extract(raw)


def preview(
    records: Iterable[RawRecord],
    source: str,
    *,
    id_policy: Optional[str] = None,
) -> List[CanonicalListing]:
    """Normalize a batch without persisting; records that fail are dropped."""
    extractor = get_extractor(source, id_policy=id_policy)
    out: List[CanonicalListing] = []
    for raw in records:
        try:
            out.append(extractor.extract(raw))
        except AggregatorError as e:
            logger.warning("[normalize] preview SKIP source=%s | %s", source, e)
    return out
