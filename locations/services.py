"""
Country and city resolution for the identity upsert pipeline.

Provides:
- normalize_country_code() / normalize_city_name(): input normalization
- find_or_create_country(): lazy Country creation keyed by ISO code
- find_or_create_city(): lazy City creation keyed by disambiguated slug
- haversine_distance(): Python-side distance calculation
"""

import logging
import math
import re
from decimal import Decimal
from typing import Optional

from locations.models import City, Country
from locations.slugs import allocate_city_slug
from venues.errors import (
    InvalidCityData,
    InvalidCountryData,
    SlugConflictUnresolvable,
    UniqueConstraintRace,
)
from venues.upsert import insert_or_reselect

logger = logging.getLogger(__name__)

# Earth radius in kilometres (for Haversine)
EARTH_RADIUS_KM = 6371.0

COUNTRY_CODE_RE = re.compile(r'^[A-Z]{2,3}$')


def normalize_country_code(code: Optional[str]) -> str:
    """Trim and uppercase an ISO country code ('  gb ' -> 'GB')."""
    return (code or "").strip().upper()


def normalize_city_name(name: Optional[str]) -> str:
    """Trim and collapse internal whitespace, keeping the geocoder's casing."""
    return re.sub(r'\s+', ' ', (name or "")).strip()


def find_or_create_country(code: Optional[str], name: Optional[str] = None) -> Country:
    """
    Return the Country for ``code``, creating it on first sighting.

    Raises:
        InvalidCountryData: code is missing or not 2-3 letters.
        UniqueConstraintRace: insert kept colliding and the re-select found nothing.
    """
    normalized = normalize_country_code(code)
    if not COUNTRY_CODE_RE.match(normalized):
        raise InvalidCountryData(f"Invalid country code: {code!r}", code=code)

    display_name = (name or "").strip() or normalized

    country, created = insert_or_reselect(
        find=lambda: Country.objects.filter(code=normalized).first(),
        create=lambda: Country.objects.create(code=normalized, name=display_name),
        label=f"country {normalized}",
    )
    if created:
        logger.info(f"Created country {normalized} ({display_name})")
    return country


def find_or_create_city(
    name: Optional[str],
    country: Country,
    latitude: Optional[Decimal] = None,
    longitude: Optional[Decimal] = None,
) -> City:
    """
    Return the City called ``name`` in ``country``, creating it if needed.

    The slug is re-allocated on every attempt so that a competing insert of
    a same-named city in another country is seen before we retry.

    Raises:
        InvalidCityData: name is empty, or the slug resolves to a city that
            belongs to a different country.
        SlugConflictUnresolvable: the retry budget ran out.
    """
    normalized = normalize_city_name(name)
    if not normalized:
        raise InvalidCityData("City name is missing", country=country.code)

    def find():
        slug = allocate_city_slug(normalized, country)
        return City.objects.filter(slug=slug).select_related('country').first()

    def create():
        slug = allocate_city_slug(normalized, country)
        return City.objects.create(
            name=normalized,
            slug=slug,
            country=country,
            latitude=latitude,
            longitude=longitude,
        )

    try:
        city, created = insert_or_reselect(find, create, label=f"city {normalized}/{country.code}")
    except UniqueConstraintRace as exc:
        raise SlugConflictUnresolvable(
            f"Could not allocate a slug for city '{normalized}' in {country.code}",
            city=normalized,
            country=country.code,
        ) from exc

    if city.country_id != country.pk:
        raise InvalidCityData(
            f"City slug '{city.slug}' belongs to {city.country.code}, not {country.code}",
            city=normalized,
            country=country.code,
        )

    if created:
        logger.info(f"Created city {city.slug} ({normalized}, {country.code})")
    return city


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate Haversine distance between two points in kilometres.

    For use in Python (not SQL). Used by the duplicate detector.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2)
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_KM * c
