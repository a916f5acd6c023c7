"""
Geocoding adapter for venue addresses.

Uses Google (GoogleV3) when GOOGLE_MAPS_API_KEY is configured, and
OpenStreetMap/Nominatim otherwise. Either way the provider response is
reduced to the shape the identity pipeline consumes::

    {"place_id": ..., "location": {"lat": ..., "lng": ...},
     "country": {"name": ..., "code": ...}, "city": {"name": ...},
     "postal_code": ...}

and normalized into a GeocodeResult.
"""

import logging
from typing import Optional

from django.conf import settings
from geopy.exc import GeocoderServiceError
from geopy.geocoders import GoogleV3, Nominatim

from venues.reports import GeocodeResult

logger = logging.getLogger(__name__)

# Nominatim address keys that can carry the locality, most specific first
NOMINATIM_CITY_KEYS = ('city', 'town', 'village', 'municipality', 'suburb', 'county')

# Google address component types for the locality, most specific first
GOOGLE_CITY_TYPES = ('locality', 'postal_town', 'administrative_area_level_2')


def use_google() -> bool:
    return bool(getattr(settings, 'GOOGLE_MAPS_API_KEY', ''))


def get_geocoder():
    """Return the configured geopy geocoder."""
    if use_google():
        return GoogleV3(api_key=settings.GOOGLE_MAPS_API_KEY, timeout=10)
    return Nominatim(user_agent=settings.GEOCODER_USER_AGENT, timeout=10)


def parse_nominatim(raw: dict) -> dict:
    """Reduce a Nominatim ``addressdetails`` response to the geocoder shape."""
    address = raw.get('address') or {}
    city = next((address[key] for key in NOMINATIM_CITY_KEYS if address.get(key)), "")

    if raw.get('osm_type') and raw.get('osm_id'):
        place_id = f"osm:{raw['osm_type']}:{raw['osm_id']}"
    else:
        place_id = str(raw['place_id']) if raw.get('place_id') else None

    return {
        'place_id': place_id,
        'location': {'lat': raw.get('lat'), 'lng': raw.get('lon')},
        'country': {'name': address.get('country', ""), 'code': address.get('country_code', "")},
        'city': {'name': city},
        'postal_code': address.get('postcode'),
    }


def parse_google(raw: dict) -> dict:
    """Reduce a Google Geocoding API result to the geocoder shape."""
    components = raw.get('address_components') or []

    def component(*types, short=False):
        for wanted in types:
            for item in components:
                if wanted in item.get('types', []):
                    return item.get('short_name' if short else 'long_name', "")
        return ""

    location = (raw.get('geometry') or {}).get('location') or {}

    return {
        'place_id': raw.get('place_id'),
        'location': {'lat': location.get('lat'), 'lng': location.get('lng')},
        'country': {'name': component('country'), 'code': component('country', short=True)},
        'city': {'name': component(*GOOGLE_CITY_TYPES)},
        'postal_code': component('postal_code') or None,
    }


def geocode_address(address: str) -> Optional[GeocodeResult]:
    """
    Geocode an address string.

    Args:
        address: Full address string to geocode

    Returns:
        GeocodeResult, or None if the provider found nothing.

    Raises:
        GeocoderServiceError: provider unreachable or timed out (callers retry).
    """
    if not address or not address.strip():
        return None

    google = use_google()
    geocoder = get_geocoder()
    try:
        if google:
            location = geocoder.geocode(address)
        else:
            location = geocoder.geocode(address, addressdetails=True)
    except GeocoderServiceError as e:
        logger.error(f"Geocoding service error for '{address}': {e}")
        raise

    if not location:
        logger.warning(f"No geocoding result for: {address}")
        return None

    shape = parse_google(location.raw) if google else parse_nominatim(location.raw)

    result = GeocodeResult.from_mapping(shape)
    logger.info(f"Geocoded '{address}' to ({result.latitude}, {result.longitude}) in {result.city_name}")
    return result
