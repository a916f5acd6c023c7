from typing import List, Optional
from datetime import datetime
from decimal import Decimal
import logging

from ninja import Router, Schema, Query
from ninja.errors import HttpError

from api.auth import ServiceTokenAuth
from venues.duplicates import duplicate_statistics, pending_candidates
from venues.errors import VenueIdentityError, VenueNotFound, get_status_code
from venues.merge import merge, merge_history, preview_merge, reject_duplicate
from venues.models import ConfidenceBand, DuplicateCandidate, MergeLogEntry, Venue

logger = logging.getLogger(__name__)

router = Router()


class VenueSchema(Schema):
    id: int
    name: str
    slug: str
    address: str
    postcode: Optional[str] = None
    city_id: int
    city: str
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    place_id: Optional[str] = None
    phone: str
    website: str
    merged_into_id: Optional[int] = None

    @staticmethod
    def resolve_city(obj):
        return obj.city.name


class CandidateSchema(Schema):
    id: int
    venue_a: VenueSchema
    venue_b: VenueSchema
    name_similarity: float
    location_similarity: float
    confidence_score: float
    confidence_band: str
    match_criteria: List[str]
    status: str

    @staticmethod
    def resolve_confidence_band(obj):
        return obj.confidence_level.value


class DuplicateStatsSchema(Schema):
    total: int
    pending: int
    reviewed: int
    merged: int
    rejected: int
    high: int
    medium: int
    low: int
    avg_confidence: Optional[float] = None
    avg_name_similarity: Optional[float] = None
    avg_location_similarity: Optional[float] = None


class MergeRequestSchema(Schema):
    primary_id: int
    secondary_id: int
    actor: str
    notes: str = ""
    metadata_strategy: str = "combine"


class RejectRequestSchema(Schema):
    venue_a_id: int
    venue_b_id: int
    actor: str
    notes: str = ""


class RejectResponseSchema(Schema):
    status: str
    log_id: int


class MergePreviewSchema(Schema):
    primary: dict
    secondary: dict
    events_to_migrate: int
    conflicts: List[dict]
    fields_to_take: List[str]
    blocking: List[str]
    recommendation: str
    recommended_primary_id: Optional[int] = None


class MergeLogSchema(Schema):
    id: int
    action: str
    primary_venue_id: int
    secondary_venue_id: int
    actor: str
    notes: str
    metadata: dict
    created_at: datetime


def _raise_http(error: VenueIdentityError):
    """Translate an engine error into an HTTP error carrying its code."""
    logger.info(f"Venue API error {error.code.value}: {error}")
    raise HttpError(get_status_code(error.code), error.code.value)


@router.get("/duplicates", auth=ServiceTokenAuth(), response=List[CandidateSchema])
def list_duplicates(
    request,
    status: str = DuplicateCandidate.Status.PENDING,
    band: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
):
    """Duplicate candidates, most confident first."""
    if status not in DuplicateCandidate.Status.values:
        raise HttpError(400, f"Unknown status '{status}'")
    if band is not None and band not in ConfidenceBand.values:
        raise HttpError(400, f"Unknown band '{band}'")

    band_value = ConfidenceBand(band) if band else None
    return list(pending_candidates(band=band_value, status=status)[:limit])


@router.get("/duplicates/stats", auth=ServiceTokenAuth(), response=DuplicateStatsSchema)
def duplicate_stats(request):
    return duplicate_statistics()


@router.get("/venues/merge-preview", auth=ServiceTokenAuth(), response=MergePreviewSchema)
def merge_preview(request, primary_id: int, secondary_id: int, metadata_strategy: str = "combine"):
    try:
        preview = preview_merge(primary_id, secondary_id, metadata_strategy)
    except VenueIdentityError as e:
        _raise_http(e)

    return {
        'primary': preview.primary,
        'secondary': preview.secondary,
        'events_to_migrate': preview.events_to_migrate,
        'conflicts': preview.conflicts,
        'fields_to_take': preview.fields_to_take,
        'blocking': preview.blocking,
        'recommendation': preview.recommendation,
        'recommended_primary_id': preview.recommended_primary_id,
    }


@router.get("/venues/merge-history", auth=ServiceTokenAuth(), response=List[MergeLogSchema])
def list_merge_history(
    request,
    venue_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
):
    if action is not None and action not in MergeLogEntry.Action.values:
        raise HttpError(400, f"Unknown action '{action}'")
    return list(merge_history(venue_id=venue_id, action=action, limit=limit))


@router.post("/venues/merge", auth=ServiceTokenAuth(), response=VenueSchema)
def merge_venues(request, payload: MergeRequestSchema):
    try:
        return merge(
            payload.primary_id,
            payload.secondary_id,
            actor=payload.actor,
            notes=payload.notes,
            metadata_strategy=payload.metadata_strategy,
        )
    except VenueIdentityError as e:
        _raise_http(e)


@router.post("/venues/reject-duplicate", auth=ServiceTokenAuth(), response=RejectResponseSchema)
def reject_venue_duplicate(request, payload: RejectRequestSchema):
    try:
        entry, created = reject_duplicate(
            payload.venue_a_id,
            payload.venue_b_id,
            actor=payload.actor,
            notes=payload.notes,
        )
    except VenueIdentityError as e:
        _raise_http(e)

    return {'status': 'rejected' if created else 'already_rejected', 'log_id': entry.pk}


@router.get("/venues/{venue_id}", auth=ServiceTokenAuth(), response=VenueSchema)
def get_venue(request, venue_id: int):
    """Venue by id; a merged-away venue resolves to the venue it was merged into."""
    venue = Venue.objects.select_related('city', 'merged_into', 'merged_into__city').filter(pk=venue_id).first()
    if venue is None:
        _raise_http(VenueNotFound(f"Venue {venue_id} does not exist", venue_id=venue_id))
    return venue.canonical()
