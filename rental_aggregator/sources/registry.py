from __future__ import annotations

from typing import Dict, Optional, Type

from ..errors import UnsupportedSourceError
from .base import BaseExtractor
from .adapters.kleinanzeigen import KleinanzeigenExtractor
from .adapters.wg_gesucht import WgGesuchtExtractor


EXTRACTORS: Dict[str, Type[BaseExtractor]] = {
    KleinanzeigenExtractor.source: KleinanzeigenExtractor,
    WgGesuchtExtractor.source: WgGesuchtExtractor,
}


def register_extractor(cls: Type[BaseExtractor]) -> Type[BaseExtractor]:
    """Class decorator: make a new source available to normalize()."""
    if not cls.source:
        raise ValueError(f"{cls.__name__} has no source tag")
    EXTRACTORS[cls.source] = cls
    return cls


def get_extractor(source: str, id_policy: Optional[str] = None) -> BaseExtractor:
    try:
        cls = EXTRACTORS[source]
    except KeyError:
        raise UnsupportedSourceError(source) from None
    return cls(id_policy=id_policy)
