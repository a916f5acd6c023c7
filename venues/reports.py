"""
Boundary normalization for scraped venue reports and geocoder output.

Scrapers and geocoders hand us loose dicts with inconsistent keys
('title' vs 'name', 'postal_code' vs 'postcode', nested vs flat
coordinates). They are normalized exactly once here into frozen
dataclasses; everything downstream works with typed fields.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

# Coordinates are stored with 6 decimal places (~0.1 m)
COORDINATE_PLACES = Decimal('0.000001')

# UK postcode (e.g., 'SW1A 1AA') and US ZIP (e.g., '02451' or '02451-1234')
UK_POSTCODE_RE = re.compile(r'\b([A-Z]{1,2}\d[A-Z\d]?)\s*(\d[A-Z]{2})\b', re.IGNORECASE)
# A ZIP only counts after a state code ("TX 77077") or as the last part of the
# address (", 77077"); a bare leading number is a street number.
US_ZIP_RE = re.compile(r'\b[A-Z]{2}\s+(\d{5})(?:-\d{4})?\b')
TRAILING_ZIP_RE = re.compile(r',\s*(\d{5})(?:-\d{4})?\s*$')


def _clean_text(value: Any) -> str:
    """Trim and collapse whitespace; non-strings become ''."""
    if value is None:
        return ""
    return re.sub(r'\s+', ' ', str(value)).strip()


def _first(data: Mapping, *keys) -> Any:
    """Return the first non-empty scalar value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value not in (None, "") and not isinstance(value, Mapping):
            return value
    return None


def to_coordinate(value) -> Optional[Decimal]:
    """Convert value to a 6-place Decimal, or None if it is not a number."""
    if value is None or value == "":
        return None
    try:
        coordinate = Decimal(str(value))
        if not coordinate.is_finite():
            return None
        return coordinate.quantize(COORDINATE_PLACES)
    except (InvalidOperation, ValueError, TypeError):
        return None


def normalize_postcode(value: Any) -> Optional[str]:
    """Uppercase and collapse whitespace; empty becomes None."""
    cleaned = _clean_text(value).upper()
    return cleaned or None


def extract_postcode(address: str) -> Optional[str]:
    """
    Pull a postcode out of a free-text address.

    UK postcodes are normalized to 'OUTWARD INWARD'. Falls back to a US ZIP
    following a state code or closing the address.
    """
    if not address:
        return None

    uk_match = UK_POSTCODE_RE.search(address)
    if uk_match:
        return f"{uk_match.group(1)} {uk_match.group(2)}".upper()

    zip_match = US_ZIP_RE.search(address) or TRAILING_ZIP_RE.search(address)
    if zip_match:
        return zip_match.group(1)

    return None


@dataclass(frozen=True)
class VenueReport:
    """A scraped sighting of a venue, as reported by a source."""

    name: str
    address: str
    phone: str = ""
    website: str = ""
    postcode: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping) -> "VenueReport":
        """Build a report from a loose scraper dict (string or symbol-ish keys)."""
        data = {str(k): v for k, v in (data or {}).items()}
        address = _clean_text(_first(data, 'address', 'street_address', 'location'))
        postcode = normalize_postcode(_first(data, 'postcode', 'postal_code', 'zip'))
        return cls(
            name=_clean_text(_first(data, 'name', 'title', 'venue_name')),
            address=address,
            phone=_clean_text(_first(data, 'phone', 'phone_number', 'telephone')),
            website=_clean_text(_first(data, 'website', 'url', 'canonical_url')),
            postcode=postcode or extract_postcode(address),
        )


@dataclass(frozen=True)
class GeocodeResult:
    """Normalized geocoder output for one address."""

    country_code: str
    country_name: str
    city_name: str
    latitude: Optional[Decimal]
    longitude: Optional[Decimal]
    place_id: Optional[str] = None
    postcode: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_mapping(cls, data: Mapping) -> "GeocodeResult":
        """
        Build a result from the geocoder shape::

            {"place_id": ..., "location": {"lat": ..., "lng": ...},
             "country": {"name": ..., "code": ...}, "city": {"name": ...},
             "postal_code": ...}

        Flat keys (country_code, city, latitude, longitude) are accepted too.
        Out-of-range coordinates are treated as missing.
        """
        data = {str(k): v for k, v in (data or {}).items()}

        country = data.get('country') if isinstance(data.get('country'), Mapping) else {}
        city = data.get('city') if isinstance(data.get('city'), Mapping) else {}
        location = data.get('location') if isinstance(data.get('location'), Mapping) else {}

        latitude = to_coordinate(_first(location, 'lat', 'latitude') if location else _first(data, 'latitude', 'lat'))
        longitude = to_coordinate(_first(location, 'lng', 'lon', 'longitude') if location else _first(data, 'longitude', 'lng', 'lon'))
        if latitude is not None and not (-90 <= latitude <= 90):
            latitude = None
        if longitude is not None and not (-180 <= longitude <= 180):
            longitude = None

        place_id = _clean_text(data.get('place_id')) or None

        return cls(
            country_code=_clean_text(_first(country, 'code') if country else _first(data, 'country_code')),
            country_name=_clean_text(_first(country, 'name') if country else _first(data, 'country_name', 'country')),
            city_name=_clean_text(_first(city, 'name') if city else _first(data, 'city_name', 'city')),
            latitude=latitude,
            longitude=longitude,
            place_id=place_id,
            postcode=normalize_postcode(_first(data, 'postal_code', 'postcode')),
        )
