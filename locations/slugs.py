"""
Slug allocation for cities and venues.

Slugs are deterministic for a given name and only grow a suffix when the
base slug is already owned by an unrelated row:

- cities: ``base`` or ``base-<country code>``
- venues: ``base``, ``base-<city slug>``, ``base-<city slug>-2`` ...
"""

from django.utils.text import slugify

# Upper bound on numbered venue slug candidates before giving up
MAX_NUMBERED_SUFFIX = 50


def slugify_name(name: str) -> str:
    """Return the URL-safe base slug for a display name."""
    slug = slugify(name or "")
    return slug or "unnamed"


def allocate_city_slug(name: str, country) -> str:
    """
    Pick the slug for a city named ``name`` in ``country``.

    Returns the base slug unless a city in a *different* country already
    owns it, in which case the lowercase country code is appended. A city
    in the same country owning the base slug is the same city, so the base
    slug is returned and the caller reuses that row.
    """
    from locations.models import City

    base = slugify_name(name)
    owner = City.objects.filter(slug=base).select_related('country').first()
    if owner is None or owner.country_id == country.pk:
        return base
    return f"{base}-{country.code.lower()}"


def venue_slug_candidates(name: str, city_slug: str):
    """Yield venue slug candidates in preference order."""
    base = slugify_name(name)
    yield base
    yield f"{base}-{city_slug}"
    for n in range(2, MAX_NUMBERED_SUFFIX + 1):
        yield f"{base}-{city_slug}-{n}"


def allocate_venue_slug(name: str, city) -> str:
    """
    Return the first free venue slug for ``name`` in ``city``.

    Soft-deleted venues keep their slugs so that old URLs stay resolvable
    through the merge redirect; they count as taken.
    """
    from venues.models import Venue

    candidates = list(venue_slug_candidates(name, city.slug))
    taken = set(Venue.objects.filter(slug__in=candidates).values_list('slug', flat=True))
    for candidate in candidates:
        if candidate not in taken:
            return candidate

    from venues.errors import SlugConflictUnresolvable
    raise SlugConflictUnresolvable(f"No free slug for venue '{name}' in {city.slug}", name=name, city=city.slug)
