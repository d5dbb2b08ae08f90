# hmohunter/domain/types.py
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from .parsing import is_empty


class ListingType(str, Enum):
    rent = "rent"
    purchase = "purchase"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


def _storable(v: Any) -> Any:
    if isinstance(v, tuple):
        return list(v)
    if isinstance(v, Enum):
        return v.value
    return v


class EnrichmentBlock:
    """
    One category of optional enrichment fields.

    Subclasses are frozen dataclasses; the class attributes are the category's
    merge rules:
      authority    sources allowed to overwrite an existing value, best first
      refreshable  fields that are always overwritten (timestamps)
      derived      re-computed numbers; only overwritten on force_update
    """

    category: ClassVar[str] = ""
    authority: ClassVar[tuple[str, ...]] = ()
    refreshable: ClassVar[frozenset[str]] = frozenset()
    derived: ClassVar[frozenset[str]] = frozenset()

    def fields(self) -> dict[str, Any]:
        """Populated fields only, in storable form."""
        out: dict[str, Any] = {}
        for f in dataclasses.fields(self):  # type: ignore[arg-type]
            v = getattr(self, f.name)
            if not is_empty(v):
                out[f.name] = _storable(v)
        return out

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in dataclasses.fields(cls))  # type: ignore[arg-type]


@dataclass(frozen=True)
class ListingDetails(EnrichmentBlock):
    category = "listing"
    authority = ("zoopla", "rightmove")

    title: str | None = None
    property_type: str | None = None
    price_pcm: float | None = None
    purchase_price: float | None = None
    description: str | None = None
    images: tuple[str, ...] = ()
    floor_plans: tuple[str, ...] = ()
    source_url: str | None = None
    is_furnished: bool | None = None
    is_student_friendly: bool | None = None
    is_pet_friendly: bool | None = None
    available_from: str | None = None


@dataclass(frozen=True)
class Licensing(EnrichmentBlock):
    category = "licensing"
    authority = ("propertydata_hmo", "council_register", "searchland")

    licence_id: str | None = None
    licence_start_date: str | None = None
    licence_end_date: str | None = None
    licence_status: str | None = None  # active|expired|pending|none
    max_occupants: int | None = None
    licensed_hmo: bool | None = None
    hmo_status: str | None = None


@dataclass(frozen=True)
class Ownership(EnrichmentBlock):
    category = "ownership"
    authority = ("land_registry", "companies_house", "searchland")

    owner_name: str | None = None
    owner_address: str | None = None
    owner_type: str | None = None  # individual|company|trust|government|unknown
    company_name: str | None = None
    company_number: str | None = None
    company_status: str | None = None
    title_number: str | None = None
    owner_enrichment_source: str | None = None


@dataclass(frozen=True)
class Epc(EnrichmentBlock):
    category = "epc"
    authority = ("epc_register", "searchland")

    epc_rating: str | None = None
    epc_rating_numeric: int | None = None
    epc_certificate_url: str | None = None
    epc_expiry_date: str | None = None
    floor_area: float | None = None


@dataclass(frozen=True)
class Planning(EnrichmentBlock):
    category = "planning"
    authority = ("searchland",)

    article_4_area: bool | None = None
    conservation_area: bool | None = None
    listed_building_grade: str | None = None
    planning_constraints: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class Connectivity(EnrichmentBlock):
    category = "connectivity"
    authority = ("ofcom",)

    broadband_max_download: float | None = None
    broadband_max_upload: float | None = None
    has_fibre: bool | None = None


@dataclass(frozen=True)
class Valuation(EnrichmentBlock):
    category = "valuation"
    authority = ("street_data", "patma")
    derived = frozenset({"estimated_value", "estimated_rent", "rental_yield", "area_avg_rent"})

    estimated_value: float | None = None
    estimated_rent: float | None = None
    rental_yield: float | None = None
    area_avg_rent: float | None = None
    year_built: int | None = None


@dataclass(frozen=True)
class Tracking(EnrichmentBlock):
    category = "tracking"
    refreshable = frozenset({"last_synced", "last_seen_at", "last_enriched_at", "title_last_enriched_at", "is_stale"})

    last_synced: datetime | None = None
    last_seen_at: datetime | None = None
    last_enriched_at: datetime | None = None
    title_last_enriched_at: datetime | None = None
    is_stale: bool | None = None


BLOCK_TYPES: tuple[type[EnrichmentBlock], ...] = (
    ListingDetails,
    Licensing,
    Ownership,
    Epc,
    Planning,
    Connectivity,
    Valuation,
    Tracking,
)

# Identity/location columns: filled when empty, never overwritten by a match.
CORE_FIELDS: tuple[str, ...] = (
    "address",
    "postcode",
    "city",
    "latitude",
    "longitude",
    "bedrooms",
    "bathrooms",
    "listing_type",
    "uprn",
)


@dataclass(frozen=True)
class PropertyListing:
    """One property as reported by one source."""

    address: str
    postcode: str
    source_name: str
    external_id: str
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    listing_type: ListingType = ListingType.rent
    uprn: str | None = None
    enrichments: tuple[EnrichmentBlock, ...] = ()

    @property
    def coordinate(self) -> Coordinate | None:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(lat=self.latitude, lng=self.longitude)

    def with_coordinate(self, coord: Coordinate) -> "PropertyListing":
        return dataclasses.replace(self, latitude=coord.lat, longitude=coord.lng)

    def block(self, kind: type[EnrichmentBlock]) -> EnrichmentBlock | None:
        for b in self.enrichments:
            if isinstance(b, kind):
                return b
        return None

    def core_fields(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in CORE_FIELDS:
            v = getattr(self, name)
            if not is_empty(v):
                out[name] = _storable(v)
        return out

    def to_fields(self) -> dict[str, Any]:
        """Flat column -> value mapping of every populated field."""
        out = self.core_fields()
        for b in self.enrichments:
            out.update(b.fields())
        return out


@dataclass(frozen=True)
class ListingPatch:
    """Partial listing returned by an enrichment adapter."""

    source: str
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_blocks(cls, source: str, *blocks: EnrichmentBlock) -> "ListingPatch":
        out: dict[str, Any] = {}
        for b in blocks:
            out.update(b.fields())
        return cls(source=source, fields=out)

    def is_empty(self) -> bool:
        return not self.fields
