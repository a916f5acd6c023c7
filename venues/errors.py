"""
Error codes for venue identity resolution, duplicate detection and merging.

Codes are machine-readable so that the review API and the ingestion tasks
can react to specific conditions (retry a race, surface a conflict to a
reviewer, drop an unusable report).
"""

from enum import Enum


class VenueErrorCode(str, Enum):
    """Machine-readable error codes for the venue engine."""

    # Rejected input (4xx)
    MISSING_ADDRESS = "missing_address"  # Report has no usable address
    MISSING_VENUE_NAME = "missing_venue_name"  # Report has no venue name
    MISSING_GEOCOORDINATES = "missing_geocoordinates"  # Geocoder returned no lat/lng
    INVALID_COUNTRY_DATA = "invalid_country_data"  # Country code/name missing or malformed
    INVALID_CITY_DATA = "invalid_city_data"  # City name missing or belongs to another country

    # Uniqueness (409)
    SLUG_CONFLICT_UNRESOLVABLE = "slug_conflict_unresolvable"  # Every slug candidate is taken
    UNIQUE_CONSTRAINT_RACE = "unique_constraint_race"  # Retry budget exhausted, caller may retry

    # Merge manager
    ALREADY_MERGED = "already_merged"  # One side already redirects elsewhere
    MERGE_CHAIN_REJECTED = "merge_chain_rejected"  # Merge would create a redirect chain
    ALREADY_REJECTED = "already_rejected"  # Pair was already rejected (informational)
    MERGE_CONFLICT = "merge_conflict"  # Rows locked by a concurrent merge/scan, retry
    INVALID_MERGE = "invalid_merge"  # Merge of a venue into itself
    VENUE_NOT_FOUND = "venue_not_found"


# HTTP status code mapping for each error
ERROR_STATUS_CODES = {
    VenueErrorCode.MISSING_ADDRESS: 400,
    VenueErrorCode.MISSING_VENUE_NAME: 400,
    VenueErrorCode.MISSING_GEOCOORDINATES: 422,
    VenueErrorCode.INVALID_COUNTRY_DATA: 422,
    VenueErrorCode.INVALID_CITY_DATA: 422,
    VenueErrorCode.SLUG_CONFLICT_UNRESOLVABLE: 409,
    VenueErrorCode.UNIQUE_CONSTRAINT_RACE: 409,
    VenueErrorCode.ALREADY_MERGED: 409,
    VenueErrorCode.MERGE_CHAIN_REJECTED: 409,
    VenueErrorCode.ALREADY_REJECTED: 200,
    VenueErrorCode.MERGE_CONFLICT: 409,
    VenueErrorCode.INVALID_MERGE: 400,
    VenueErrorCode.VENUE_NOT_FOUND: 404,
}


def get_status_code(error_code: VenueErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_STATUS_CODES.get(error_code, 500)


class VenueIdentityError(Exception):
    """Base class; ``code`` identifies the condition, ``context`` holds the ids involved."""

    code = None

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code.value)
        self.context = context

    @property
    def status_code(self) -> int:
        return get_status_code(self.code)


class MissingAddress(VenueIdentityError):
    code = VenueErrorCode.MISSING_ADDRESS


class MissingVenueName(VenueIdentityError):
    code = VenueErrorCode.MISSING_VENUE_NAME


class MissingGeocoordinates(VenueIdentityError):
    code = VenueErrorCode.MISSING_GEOCOORDINATES


class InvalidCountryData(VenueIdentityError):
    code = VenueErrorCode.INVALID_COUNTRY_DATA


class InvalidCityData(VenueIdentityError):
    code = VenueErrorCode.INVALID_CITY_DATA


class SlugConflictUnresolvable(VenueIdentityError):
    code = VenueErrorCode.SLUG_CONFLICT_UNRESOLVABLE


class UniqueConstraintRace(VenueIdentityError):
    code = VenueErrorCode.UNIQUE_CONSTRAINT_RACE


class AlreadyMerged(VenueIdentityError):
    code = VenueErrorCode.ALREADY_MERGED


class MergeChainRejected(VenueIdentityError):
    code = VenueErrorCode.MERGE_CHAIN_REJECTED


class MergeConflict(VenueIdentityError):
    code = VenueErrorCode.MERGE_CONFLICT


class InvalidMerge(VenueIdentityError):
    code = VenueErrorCode.INVALID_MERGE


class VenueNotFound(VenueIdentityError):
    code = VenueErrorCode.VENUE_NOT_FOUND
