from __future__ import annotations

from typing import Any, Dict

from ...extractors import (
    classify_property_type,
    clean_string,
    derive_id,
    extract_coordinates,
    normalize_images,
    parse_price,
    parse_rooms,
    parse_size,
)
from ...models import KLEINANZEIGEN, CanonicalListing
from ..base import BaseExtractor
from ..types import RawRecord


def _first(raw: RawRecord, *keys: str) -> Any:
    for k in keys:
        v = raw.get(k)
        if v not in (None, ""):
            return v
    return None


class KleinanzeigenExtractor(BaseExtractor):
    """
    List-stage records carry id/title/price/location/images/url; the detail
    stage adds fullDescription, allImages and detailed* fallbacks. The
    listing id is the numeric ad id, which is already unique on the site.
    """

    source = KLEINANZEIGEN
    base_url = "https://www.kleinanzeigen.de"

    def extract(self, raw: RawRecord) -> CanonicalListing:
        listing_id = derive_id(
            raw.get("id"),
            (raw.get("url"), raw.get("title")),
            policy=self.id_policy,
            source=self.source,
        )

        title = clean_string(_first(raw, "title", "detailedTitle"))
        body = _first(raw, "fullDescription", "description") or ""

        return CanonicalListing(
            id=listing_id,
            source=self.source,
            source_id=listing_id,
            title=title,
            description=clean_string(raw.get("description")),
            full_description=clean_string(body),
            price=parse_price(_first(raw, "price", "detailedPrice")),
            currency=clean_string(raw.get("currency")).upper() or "EUR",
            location=clean_string(_first(raw, "location", "detailedLocation")),
            detailed_location=clean_string(_first(raw, "detailedLocation", "location")),
            coordinates=extract_coordinates(raw),
            size=parse_size(body) or parse_size(title),
            rooms=parse_rooms(body) or parse_rooms(title),
            type=classify_property_type(raw.get("title") or "", body),
            images=normalize_images(
                _first(raw, "allImages", "images") or [],
                base_url=self.base_url,
            ),
            url=clean_string(raw.get("url")),
            source_data={
                "originalTitle": raw.get("title") or None,
                "originalDescription": raw.get("description") or None,
                "seller": raw.get("seller") or {},
                "additionalDetails": raw.get("additionalDetails") or {},
                "createdAt": raw.get("createdAt") or None,
                "postedDate": raw.get("postedDate") or None,
                "detailedInfoFetched": raw.get("detailedInfoFetched"),
            },
        )

    def merge_detail(self, raw: RawRecord, detail: RawRecord) -> Dict[str, Any]:
        merged = dict(raw)
        detail_images = detail.get("images")
        merged.update(
            {
                "fullDescription": detail.get("description") or raw.get("description"),
                "allImages": detail_images if detail_images else raw.get("images"),
                "detailedTitle": detail.get("title") or raw.get("title"),
                "detailedLocation": detail.get("location") or raw.get("location"),
                "detailedPrice": detail.get("price") or raw.get("price"),
                "additionalDetails": detail.get("additionalDetails") or {},
                "postedDate": detail.get("postedDate"),
                "detailedInfoFetched": True,
            }
        )
        return merged
