from __future__ import annotations

from typing import Any, Optional

from ...extractors import (
    classify_property_type,
    clean_string,
    derive_id,
    extract_coordinates,
    normalize_images,
    parse_price,
    parse_rooms,
    parse_size,
    to_float,
)
from ...models import WG_GESUCHT, CanonicalListing, ListingType
from ..base import BaseExtractor
from ..types import RawRecord

# wg-gesucht category codes; the list pages also use the slug form
CATEGORY_TYPES: dict[str, ListingType] = {
    "0": "room",
    "wg-room": "room",
    "1": "apartment",
    "1-room": "apartment",
    "2": "apartment",
    "apartment": "apartment",
    "3": "house",
    "house": "house",
}

ID_PREFIX = "wg-"


def _positive(value: Any) -> Optional[float]:
    n = to_float(value)
    return n if n is not None and n > 0 else None


class WgGesuchtExtractor(BaseExtractor):
    """
    Offer ids are only unique within wg-gesucht, so the canonical id is
    prefixed with "wg-" while sourceId keeps the bare offer id.
    """

    source = WG_GESUCHT
    base_url = "https://www.wg-gesucht.de/"

    def listing_type(self, raw: RawRecord) -> ListingType:
        category = raw.get("category")
        if category is not None:
            mapped = CATEGORY_TYPES.get(clean_string(category).lower())
            if mapped:
                return mapped
        return classify_property_type(raw.get("offer_title"), raw.get("description"))

    def extract(self, raw: RawRecord) -> CanonicalListing:
        native_id = derive_id(
            raw.get("offer_id"),
            (raw.get("offer_title"),),
            policy=self.id_policy,
            source=self.source,
        )

        title = clean_string(raw.get("offer_title"))
        description = clean_string(raw.get("description"))
        district = raw.get("district_custom") or ""

        url = clean_string(raw.get("url"))
        if not url.lower().startswith(("http://", "https://")):
            url = f"{self.base_url}{native_id}.html"

        images = [raw.get("thumb"), raw.get("sized"), raw.get("small")]
        extra_images = raw.get("images")
        if isinstance(extra_images, (list, tuple)):
            images.extend(extra_images)

        return CanonicalListing(
            id=f"{ID_PREFIX}{native_id}",
            source=self.source,
            source_id=native_id,
            title=title,
            description=description,
            full_description=description,
            price=parse_price(raw.get("total_costs")),
            currency="EUR",
            location=clean_string(district or raw.get("town_name")),
            detailed_location=clean_string(f"{raw.get('street') or ''} {district}"),
            coordinates=extract_coordinates(raw),
            size=_positive(raw.get("property_size")) or parse_size(description) or parse_size(title),
            rooms=_positive(raw.get("number_of_rooms")) or parse_rooms(description),
            type=self.listing_type(raw),
            images=normalize_images(images, base_url=self.base_url),
            url=url,
            source_data={
                "category": raw.get("category"),
                "duration": raw.get("duration"),
                "availableFrom": raw.get("available_from_date"),
                "availableTo": raw.get("available_to_date"),
                "flatshareDetails": {
                    "total": raw.get("flatshare_inhabitants_total"),
                    "males": raw.get("flatshare_males"),
                    "females": raw.get("flatshare_females"),
                    "searchedGender": raw.get("searched_for_gender"),
                },
                "userId": raw.get("user_id"),
                "verified": str(raw.get("verified_user")) == "1",
            },
        )
