"""
Identity upsert pipeline: turn a scraped (country, city, venue) sighting
into canonical Country, City and Venue rows.

Every call runs in one transaction. Concurrent ingestion workers reporting
the same venue converge on a single row through the partial unique
constraints on Venue and the bounded insert/re-select loop in
venues.upsert. The pipeline never writes soft-delete or merge-redirect
fields; a sighting of a merged-away venue is applied to its canonical
venue instead.
"""

import logging
from typing import Callable, Mapping, NamedTuple, Optional, Union

from django.db import IntegrityError, transaction
from django.db.models import F

from locations.services import find_or_create_city, find_or_create_country, normalize_city_name
from locations.slugs import allocate_venue_slug
from venues.errors import (
    InvalidCityData,
    InvalidCountryData,
    MissingAddress,
    MissingGeocoordinates,
    MissingVenueName,
    UniqueConstraintRace,
)
from venues.geocoding import geocode_address
from venues.models import Venue
from venues.reports import GeocodeResult, VenueReport
from venues.upsert import insert_or_reselect

logger = logging.getLogger(__name__)

DIFF_FIELDS = ('name', 'address', 'postcode', 'latitude', 'longitude', 'phone', 'website', 'city', 'place_id')


def validate_sighting(report: VenueReport, location: GeocodeResult) -> None:
    """Reject unusable input before anything is written."""
    if not report.address:
        raise MissingAddress("Venue report has no address", name=report.name)
    if not report.name:
        raise MissingVenueName("Venue report has no name", address=report.address)
    if not location.has_coordinates:
        raise MissingGeocoordinates(f"No coordinates for '{report.address}'", address=report.address)
    if not location.country_code or not location.country_name:
        raise InvalidCountryData(
            f"Geocoder returned incomplete country for '{report.address}'",
            code=location.country_code,
            name=location.country_name,
        )
    if not normalize_city_name(location.city_name):
        raise InvalidCityData(f"Geocoder returned no city for '{report.address}'", address=report.address)


class VenueMatch(NamedTuple):
    venue: Venue
    redirected: bool


def _first_match(queryset) -> Optional[VenueMatch]:
    """Prefer an active row; otherwise follow a merged row to its canonical venue."""
    venue = (
        queryset.select_related('merged_into')
        .order_by(F('deleted_at').asc(nulls_first=True), 'id')
        .first()
    )
    if venue is None:
        return None
    return VenueMatch(venue.canonical(), venue.merged_into_id is not None)


def match_venue(name: str, city, postcode: Optional[str], place_id: Optional[str]) -> Optional[VenueMatch]:
    """
    Find the canonical venue for a sighting.

    Priority: place_id, then name + city, then name + postcode within the
    city's country (postcodes are only meaningful inside one country).
    """
    if place_id:
        match = _first_match(Venue.objects.filter(place_id=place_id))
        if match is not None:
            return match

    match = _first_match(Venue.objects.filter(name=name, city=city))
    if match is not None:
        return match

    if postcode:
        return _first_match(Venue.objects.filter(name=name, postcode=postcode, city__country_id=city.country_id))

    return None


def diff_venue(venue: Venue, attrs: dict, *, fill_only: bool = False) -> dict:
    """
    Return the fields of ``attrs`` that would change ``venue``.

    A stored place_id always wins. With ``fill_only`` (the sighting matched
    an alias that was merged into ``venue``), only empty fields are filled.
    """
    changes = {}
    for field in DIFF_FIELDS:
        incoming = attrs.get(field)
        if field == 'city':
            current = venue.city_id
            incoming = incoming.pk if incoming is not None else None
        else:
            current = getattr(venue, field)

        if incoming in (None, ""):
            continue
        if incoming == current:
            continue

        if field == 'place_id' and current:
            logger.warning(
                f"Ignoring place_id {incoming} for venue {venue.pk}; keeping stored {current}"
            )
            continue
        if fill_only and current not in (None, ""):
            continue

        changes[field] = attrs[field]
    return changes


def _insert_venue(attrs: dict) -> Venue:
    city = attrs['city']
    if attrs['postcode']:
        held_abroad = (
            Venue.objects.active()
            .filter(name=attrs['name'], postcode=attrs['postcode'])
            .exclude(city__country_id=city.country_id)
            .first()
        )
        if held_abroad is not None:
            logger.warning(
                f"Postcode {attrs['postcode']} for '{attrs['name']}' is held by venue "
                f"{held_abroad.pk} in another country; storing without postcode"
            )
            attrs = {**attrs, 'postcode': None}

    slug = allocate_venue_slug(attrs['name'], city)
    return Venue.objects.create(slug=slug, **attrs)


def drop_identity_collisions(venue: Venue, changes: dict) -> dict:
    """
    Remove changes that would give ``venue`` an identity another active venue holds.

    Such a collision is a data conflict for a reviewer, not a race, so the
    colliding fields are skipped and the rest of the sighting still applies.
    """
    name = changes.get('name', venue.name)
    postcode = changes.get('postcode', venue.postcode)
    city_id = changes['city'].pk if 'city' in changes else venue.city_id

    others = Venue.objects.active().exclude(pk=venue.pk)
    colliding = set()
    if postcode:
        if others.filter(name=name, postcode=postcode).exists():
            colliding.update({'name', 'postcode'})
    elif others.filter(name=name, city_id=city_id, postcode__isnull=True).exists():
        colliding.update({'name', 'city'})
    if 'place_id' in changes and others.filter(place_id=changes['place_id']).exists():
        colliding.add('place_id')

    dropped = sorted(colliding & set(changes))
    if not dropped:
        return changes

    logger.warning(
        f"Not applying {', '.join(dropped)} to venue {venue.pk}: "
        f"another active venue already holds that identity"
    )
    return {field: value for field, value in changes.items() if field not in colliding}


def _apply_changes(venue: Venue, changes: dict, force_refresh: bool) -> Venue:
    if not changes and not force_refresh:
        logger.debug(f"Venue {venue.pk} unchanged, skipping write")
        return venue

    for field, value in changes.items():
        setattr(venue, field, value)

    update_fields = [f for f in changes] + ['updated_at']
    try:
        with transaction.atomic():
            venue.save(update_fields=update_fields)
    except IntegrityError as exc:
        raise UniqueConstraintRace(
            f"Update of venue {venue.pk} collided with another venue: {exc}",
            venue_id=venue.pk,
            fields=sorted(changes),
        ) from exc

    if changes:
        logger.info(f"Updated venue {venue.pk} ({venue.slug}): {', '.join(sorted(changes))}")
    return venue


def resolve_venue(report: VenueReport, location: GeocodeResult, *, force_refresh: bool = False) -> Venue:
    """
    Find or create the canonical Venue for a geocoded sighting.

    Args:
        report: Normalized scraper report.
        location: Normalized geocoder output for ``report.address``.
        force_refresh: Write (bumping updated_at) even when nothing changed.

    Returns:
        The canonical Venue. Never a soft-deleted one.

    Raises:
        VenueIdentityError subclasses; the transaction is rolled back.
    """
    validate_sighting(report, location)

    with transaction.atomic():
        country = find_or_create_country(location.country_code, location.country_name)
        city = find_or_create_city(location.city_name, country)

        attrs = {
            'name': report.name,
            'address': report.address,
            'postcode': report.postcode or location.postcode,
            'latitude': location.latitude,
            'longitude': location.longitude,
            'phone': report.phone,
            'website': report.website,
            'city': city,
            'place_id': location.place_id,
        }

        def find():
            return match_venue(report.name, city, attrs['postcode'], location.place_id)

        match, created = insert_or_reselect(
            find,
            lambda: VenueMatch(_insert_venue(attrs), False),
            label=f"venue '{report.name}' in {city.slug}",
        )
        venue = match.venue
        if created:
            logger.info(f"Created venue {venue.pk} ({venue.slug}) in {city.slug}")
            return venue

        # A sighting of a merged-away alias only fills gaps on the canonical venue
        changes = diff_venue(venue, attrs, fill_only=match.redirected)
        changes = drop_identity_collisions(venue, changes)
        return _apply_changes(venue, changes, force_refresh)


def process_venue(
    raw: Union[Mapping, VenueReport],
    *,
    geocoder: Optional[Callable[[str], Optional[GeocodeResult]]] = None,
    force_refresh: bool = False,
) -> Venue:
    """
    Boundary entry point for ingestion: normalize, geocode, resolve.

    Args:
        raw: Loose scraper dict, or an already-normalized VenueReport.
        geocoder: Callable mapping an address to a GeocodeResult (or a dict in
            the geocoder shape). Defaults to venues.geocoding.geocode_address.
        force_refresh: Passed through to resolve_venue.
    """
    report = raw if isinstance(raw, VenueReport) else VenueReport.from_mapping(raw)
    if not report.address:
        raise MissingAddress("Venue report has no address", name=report.name)

    geocoder = geocoder or geocode_address
    result = geocoder(report.address)
    if result is None:
        raise MissingGeocoordinates(f"Geocoder found nothing for '{report.address}'", address=report.address)
    if not isinstance(result, GeocodeResult):
        result = GeocodeResult.from_mapping(result)

    return resolve_venue(report, result, force_refresh=force_refresh)
