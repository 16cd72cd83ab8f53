from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ListingType = Literal["room", "apartment", "house", "commercial"]

KLEINANZEIGEN = "kleinanzeigen"
WG_GESUCHT = "wg-gesucht"


class _Document(BaseModel):
    # Python attributes are snake_case, stored documents use camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Coordinates(_Document):
    lat: Optional[float] = None
    lng: Optional[float] = None


class CanonicalListing(_Document):
    id: str
    source: str
    source_id: str

    title: str = ""
    description: str = ""
    full_description: str = ""

    price: Optional[float] = None
    currency: str = "EUR"

    location: str = ""
    detailed_location: str = ""
    coordinates: Coordinates = Field(default_factory=Coordinates)

    size: Optional[float] = None       # m²
    rooms: Optional[float] = None
    type: ListingType = "apartment"

    images: List[str] = Field(default_factory=list)
    url: str = ""

    source_data: Dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict with the persisted (camelCase) field names."""
        return self.model_dump(by_alias=True, mode="json")


class StoredListing(CanonicalListing):
    """A canonical listing as persisted, with store-owned lifecycle fields."""

    first_seen: datetime
    last_seen: datetime
    scraped_at: datetime
    is_active: bool = True

    enriched: Optional[bool] = None    # None: enrichment never attempted
    enrichment_error: Optional[str] = None


class ListingQuery(_Document):
    source: Optional[str] = None
    is_active: Optional[bool] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class UpsertResult(BaseModel):
    action: Literal["created", "updated"]
    id: str
