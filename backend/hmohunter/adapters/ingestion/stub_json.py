# hmohunter/adapters/ingestion/stub_json.py
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ...domain.address import normalize_postcode
from ...domain.parsing import get_first, to_float, to_int, to_str
from ...domain.types import ListingType, PropertyListing
from .base import SourceFetchError, blocks_from_payload

log = logging.getLogger(__name__)


def _as_list_of_dicts(payload: Any) -> list[dict[str, Any]]:
    """
    Accept either:
      - list[dict]
      - {"listings": list[dict]} or {"data": list[dict]}
    """
    if isinstance(payload, list):
        return [x for x in payload if isinstance(x, dict)]
    if isinstance(payload, dict):
        for key in ("listings", "data"):
            v = payload.get(key)
            if isinstance(v, list):
                return [x for x in v if isinstance(x, dict)]
    return []


def _listing_type(v: Any) -> ListingType:
    s = (to_str(v) or "").lower()
    if s in ("purchase", "sale", "buy"):
        return ListingType.purchase
    return ListingType.rent


@dataclass
class StubJsonSource:
    """
    Offline source for development/testing.

    Reads listing payloads from fixtures:
      backend/data/stub_listings/<POSTCODE without space>.json

    With no postcodes configured every *.json file in the directory is read.
    """

    fixtures_dir: Path
    postcodes: list[str] = field(default_factory=list)
    name: str = "stub_json"

    @classmethod
    def from_settings(cls, settings: Any) -> "StubJsonSource":
        # uvicorn is typically launched from backend/, so this is backend/data/stub_listings
        return cls(fixtures_dir=Path(settings.STUB_LISTINGS_DIR))

    @property
    def enabled(self) -> bool:
        return self.fixtures_dir.is_dir()

    def _paths(self) -> list[Path]:
        if not self.postcodes:
            return sorted(self.fixtures_dir.glob("*.json"))
        return [self.fixtures_dir / f"{normalize_postcode(pc).replace(' ', '')}.json" for pc in self.postcodes]

    async def fetch(self) -> list[PropertyListing]:
        out: list[PropertyListing] = []
        for path in self._paths():
            if not path.exists():
                # missing fixture means "no listings"
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise SourceFetchError(self.name, f"unreadable fixture {path.name}: {e}") from e

            for it in _as_list_of_dicts(raw):
                listing = self._canonicalize(it, fallback_postcode=path.stem)
                if listing is not None:
                    out.append(listing)

        log.info("stub_json: %d listings from %s", len(out), self.fixtures_dir)
        return out

    # -------------------------
    # Canonicalization
    # -------------------------

    def _canonicalize(self, it: dict[str, Any], *, fallback_postcode: str) -> PropertyListing | None:
        address = to_str(get_first(it, "address", "addressLine", "property_address"))
        postcode = normalize_postcode(to_str(get_first(it, "postcode", "postCode")) or fallback_postcode)
        if not address:
            log.debug("stub_json: fixture item without address skipped")
            return None

        external_id = to_str(get_first(it, "external_id", "listingId", "id"))
        if not external_id:
            digest = hashlib.sha1(json.dumps(it, sort_keys=True, default=str).encode("utf-8")).hexdigest()[:12]
            external_id = f"stub::{postcode.replace(' ', '')}::{digest}"

        return PropertyListing(
            address=address,
            postcode=postcode,
            source_name=to_str(it.get("source_name")) or self.name,
            external_id=external_id,
            city=to_str(it.get("city")),
            latitude=to_float(get_first(it, "latitude", "lat")),
            longitude=to_float(get_first(it, "longitude", "lng", "lon")),
            bedrooms=to_int(get_first(it, "bedrooms", "beds")),
            bathrooms=to_float(get_first(it, "bathrooms", "baths")),
            listing_type=_listing_type(it.get("listing_type")),
            uprn=to_str(it.get("uprn")),
            enrichments=blocks_from_payload(it),
        )
