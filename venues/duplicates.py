"""
Fuzzy duplicate detection for venues.

Runs as a scheduled batch pass (never inline with ingestion). Active
venues are grouped into locality buckets, and only pairs inside a bucket
are compared:

- city buckets: every pair of venues in the same city
- grid buckets: venues in neighbouring grid cells (cell size ~ radius_km)
  that are within radius_km of each other, which catches duplicates the
  geocoder filed under different cities

Each pair is scored at most once per scan. Pairs scoring at least
``policy.min_confidence`` are upserted into DuplicateCandidate keyed on
the canonically ordered pair.
"""

import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass, field, fields
from itertools import combinations
from typing import Dict, Iterator, List, Optional, Set, Tuple

from django.conf import settings
from django.db import OperationalError, transaction
from django.db.models import Avg, Count, Q
from rapidfuzz import fuzz

from locations.services import haversine_distance
from venues.models import ConfidenceBand, DuplicateCandidate, MergeLogEntry, Venue
from venues.upsert import insert_or_reselect

logger = logging.getLogger(__name__)

# Words that carry no identity in a venue name ("The Red Lion Pub" ~ "Red Lion")
FILLER_WORDS = frozenset({
    'the', 'and', 'pub', 'restaurant', 'bar', 'hotel', 'inn',
    'tavern', 'club', 'cafe', 'coffee', 'shop',
})

ADDRESS_ABBREVIATIONS = {
    'street': 'st',
    'road': 'rd',
    'avenue': 'ave',
    'lane': 'ln',
    'place': 'pl',
    'drive': 'dr',
    'square': 'sq',
}

# Degrees of latitude per kilometre
KM_PER_DEGREE = 111.32


@dataclass(frozen=True)
class DetectorPolicy:
    """
    Tunable knobs for scoring and storing duplicate pairs.

    Defaults can be overridden project-wide through
    settings.VENUE_DUPLICATE_POLICY or per scan via ``from_settings``.
    """

    name_weight: float = 0.7
    location_weight: float = 0.3
    full_match_radius_km: float = 0.1
    radius_km: float = 1.0
    min_confidence: float = 0.70
    similar_name_threshold: float = 0.85
    proximity_threshold: float = 0.8
    similar_address_threshold: float = 0.85

    def __post_init__(self):
        if self.name_weight < 0 or self.location_weight < 0:
            raise ValueError("Detector weights must be non-negative")
        if self.name_weight + self.location_weight <= 0:
            raise ValueError("At least one detector weight must be positive")
        if not 0 <= self.full_match_radius_km < self.radius_km:
            raise ValueError("full_match_radius_km must be in [0, radius_km)")
        if not 0 <= self.min_confidence <= 1:
            raise ValueError("min_confidence must be in [0, 1]")

    @classmethod
    def from_settings(cls, overrides: Optional[dict] = None) -> "DetectorPolicy":
        values = dict(getattr(settings, 'VENUE_DUPLICATE_POLICY', None) or {})
        values.update(overrides or {})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown detector policy fields: {', '.join(sorted(unknown))}")
        return cls(**values)


@dataclass(frozen=True)
class VenueSnapshot:
    """The columns of an active venue the scorer needs, loaded once per scan."""

    id: int
    name: str
    address: str
    postcode: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    place_id: Optional[str]
    city_id: int

    @classmethod
    def from_values(cls, row: dict) -> "VenueSnapshot":
        return cls(
            id=row['id'],
            name=row['name'],
            address=row['address'] or "",
            postcode=row['postcode'],
            latitude=float(row['latitude']) if row['latitude'] is not None else None,
            longitude=float(row['longitude']) if row['longitude'] is not None else None,
            place_id=row['place_id'],
            city_id=row['city_id'],
        )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class PairScore:
    name_similarity: float
    location_similarity: float
    confidence_score: float
    match_criteria: Tuple[str, ...]

    @property
    def band(self) -> ConfidenceBand:
        return ConfidenceBand.for_score(self.confidence_score)


@dataclass
class ScanReport:
    venues_scanned: int = 0
    buckets_scanned: int = 0
    pairs_compared: int = 0
    below_threshold: int = 0
    skipped_pairs: int = 0
    candidates_created: int = 0
    candidates_updated: int = 0
    failed_buckets: List[str] = field(default_factory=list)
    candidates: List[DuplicateCandidate] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            'venues_scanned': self.venues_scanned,
            'buckets_scanned': self.buckets_scanned,
            'pairs_compared': self.pairs_compared,
            'below_threshold': self.below_threshold,
            'skipped_pairs': self.skipped_pairs,
            'candidates_created': self.candidates_created,
            'candidates_updated': self.candidates_updated,
            'failed_buckets': list(self.failed_buckets),
            'candidate_ids': [c.pk for c in self.candidates],
        }


# =============================================================================
# Scoring
# =============================================================================


def _strip_punctuation(text: str) -> str:
    text = re.sub(r"['’]", "", (text or "").lower())
    text = text.replace('&', ' and ')
    return re.sub(r'[^\w\s]', ' ', text)


def normalize_name(name: str) -> str:
    """
    Normalize a venue name for comparison.

    - Lowercase, drop apostrophes, punctuation to spaces
    - Remove filler words (the, pub, tavern, ...)
    - Collapse whitespace
    """
    words = _strip_punctuation(name).split()
    return ' '.join(w for w in words if w not in FILLER_WORDS)


def normalize_address(address: str) -> str:
    """Lowercase, strip punctuation and abbreviate common street suffixes."""
    words = _strip_punctuation(address).split()
    return ' '.join(ADDRESS_ABBREVIATIONS.get(w, w) for w in words)


def normalize_postcode_key(postcode: Optional[str]) -> str:
    return re.sub(r'\s+', '', (postcode or "")).upper()


def name_similarity(a: str, b: str) -> float:
    """
    Token-sort similarity of two venue names in [0, 1].

    Falls back to the punctuation-stripped full names when filler removal
    leaves nothing to compare ("The Pub" vs "The Bar").
    """
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        na = ' '.join(_strip_punctuation(a).split())
        nb = ' '.join(_strip_punctuation(b).split())
    if not na or not nb:
        return 0.0
    return fuzz.token_sort_ratio(na, nb) / 100.0


def address_similarity(a: str, b: str) -> float:
    na, nb = normalize_address(a), normalize_address(b)
    if not na or not nb:
        return 0.0
    return fuzz.token_sort_ratio(na, nb) / 100.0


def distance_similarity(distance_km: float, policy: DetectorPolicy) -> float:
    """1.0 within the full-match radius, decaying linearly to 0.0 at radius_km."""
    if distance_km <= policy.full_match_radius_km:
        return 1.0
    if distance_km >= policy.radius_km:
        return 0.0
    span = policy.radius_km - policy.full_match_radius_km
    return 1.0 - (distance_km - policy.full_match_radius_km) / span


def geo_similarity(a: VenueSnapshot, b: VenueSnapshot, policy: DetectorPolicy) -> float:
    if not (a.has_coordinates and b.has_coordinates):
        return 0.0
    distance = haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)
    return distance_similarity(distance, policy)


def same_postcode(a: VenueSnapshot, b: VenueSnapshot) -> bool:
    key_a, key_b = normalize_postcode_key(a.postcode), normalize_postcode_key(b.postcode)
    return bool(key_a) and key_a == key_b


def location_similarity(a: VenueSnapshot, b: VenueSnapshot, policy: DetectorPolicy) -> float:
    """Distance decay, floored to 1.0 when both venues share a postcode."""
    if same_postcode(a, b):
        return 1.0
    return geo_similarity(a, b, policy)


def combine_scores(name_score: float, location_score: float, policy: DetectorPolicy) -> float:
    total = policy.name_weight + policy.location_weight
    combined = (policy.name_weight * name_score + policy.location_weight * location_score) / total
    return min(1.0, max(0.0, combined))


def score_pair(a: VenueSnapshot, b: VenueSnapshot, policy: DetectorPolicy) -> PairScore:
    """Score a pair of venues. Symmetric in ``a`` and ``b``."""
    name_score = name_similarity(a.name, b.name)
    geo_score = geo_similarity(a, b, policy)
    location_score = 1.0 if same_postcode(a, b) else geo_score
    shared_place = bool(a.place_id) and a.place_id == b.place_id

    criteria = []
    if shared_place:
        criteria.append('same_place_id')
    if name_score >= policy.similar_name_threshold:
        criteria.append('similar_name')
    na, nb = normalize_name(a.name), normalize_name(b.name)
    if na and nb and na != nb and (na in nb or nb in na):
        criteria.append('name_substring')
    if same_postcode(a, b):
        criteria.append('same_postcode')
    if a.city_id == b.city_id:
        criteria.append('same_city')
    if geo_score >= policy.proximity_threshold:
        criteria.append('geographic_proximity')
    if address_similarity(a.address, b.address) >= policy.similar_address_threshold:
        criteria.append('similar_address')

    confidence = 1.0 if shared_place else combine_scores(name_score, location_score, policy)

    return PairScore(
        name_similarity=round(name_score, 4),
        location_similarity=round(location_score, 4),
        confidence_score=round(confidence, 4),
        match_criteria=tuple(criteria),
    )


def confidence_band(score: float) -> ConfidenceBand:
    """Presentation label for a confidence score (high/medium/low)."""
    return ConfidenceBand.for_score(score)


def pair_key(a_id: int, b_id: int) -> Tuple[int, int]:
    return (a_id, b_id) if a_id < b_id else (b_id, a_id)


# =============================================================================
# Bucketing
# =============================================================================


@dataclass
class Bucket:
    key: str
    members: List[VenueSnapshot]
    # grid buckets compare members against these neighbours
    neighbours: List[VenueSnapshot] = field(default_factory=list)
    max_distance_km: Optional[float] = None

    def pairs(self) -> Iterator[Tuple[VenueSnapshot, VenueSnapshot]]:
        if self.max_distance_km is None:
            yield from combinations(self.members, 2)
            return

        for venue in self.members:
            for other in self.neighbours:
                if other.id <= venue.id:
                    continue
                distance = haversine_distance(venue.latitude, venue.longitude, other.latitude, other.longitude)
                if distance <= self.max_distance_km:
                    yield venue, other


def _grid_cell(venue: VenueSnapshot, step: float) -> Tuple[int, int]:
    return (math.floor(venue.latitude / step), math.floor(venue.longitude / step))


def build_buckets(snapshots: List[VenueSnapshot], policy: DetectorPolicy) -> List[Bucket]:
    """Group venues into city buckets and geographic grid buckets."""
    buckets = []

    by_city: Dict[int, List[VenueSnapshot]] = defaultdict(list)
    for venue in snapshots:
        by_city[venue.city_id].append(venue)
    for city_id in sorted(by_city):
        members = by_city[city_id]
        if len(members) > 1:
            buckets.append(Bucket(key=f"city:{city_id}", members=members))

    # Cells are radius_km tall; a degree of longitude shrinks with latitude,
    # so the longitude search widens by 1/cos(lat) cells.
    step = policy.radius_km / KM_PER_DEGREE
    grid: Dict[Tuple[int, int], List[VenueSnapshot]] = defaultdict(list)
    for venue in snapshots:
        if venue.has_coordinates:
            grid[_grid_cell(venue, step)].append(venue)

    for cell in sorted(grid):
        row, col = cell
        members = grid[cell]
        max_lat = max(abs(v.latitude) for v in members) + step
        span = math.ceil(1 / max(math.cos(math.radians(min(max_lat, 89.0))), 0.01))
        neighbours = [
            other
            for d_row in (-1, 0, 1)
            for d_col in range(-span, span + 1)
            for other in grid.get((row + d_row, col + d_col), ())
        ]
        if len(neighbours) > 1:
            buckets.append(Bucket(
                key=f"grid:{row}:{col}",
                members=members,
                neighbours=neighbours,
                max_distance_km=policy.radius_km,
            ))

    return buckets


# =============================================================================
# Scan
# =============================================================================


def excluded_pairs() -> Set[Tuple[int, int]]:
    """Pairs that must never be re-flagged: merged/rejected candidates and rejection logs."""
    closed = DuplicateCandidate.objects.filter(
        status__in=[DuplicateCandidate.Status.MERGED, DuplicateCandidate.Status.REJECTED],
    ).values_list('venue_a_id', 'venue_b_id')
    rejected = MergeLogEntry.objects.filter(
        action=MergeLogEntry.Action.REJECT_DUPLICATE,
    ).values_list('primary_venue_id', 'secondary_venue_id')
    return {pair_key(a, b) for a, b in closed} | {pair_key(a, b) for a, b in rejected}


def load_snapshots() -> List[VenueSnapshot]:
    rows = Venue.objects.active().order_by('id').values(
        'id', 'name', 'address', 'postcode', 'latitude', 'longitude', 'place_id', 'city_id',
    )
    return [VenueSnapshot.from_values(row) for row in rows]


def _lock_active_pair(key: Tuple[int, int]) -> bool:
    """
    Lock both venues of a pair for the rest of the bucket transaction.

    Returns False if either venue is no longer active or is locked by an
    in-flight merge; the merge wins and the pair is skipped.
    """
    try:
        with transaction.atomic():
            locked = list(
                Venue.objects.select_for_update(nowait=True)
                .filter(pk__in=key, deleted_at__isnull=True)
                .order_by('pk')
                .values_list('pk', flat=True)
            )
    except OperationalError:
        logger.info(f"Venues {key} are locked by a concurrent merge, skipping pair")
        return False
    return len(locked) == 2


def store_candidate(key: Tuple[int, int], score: PairScore) -> Tuple[Optional[DuplicateCandidate], str]:
    """
    Upsert the candidate for ``key``.

    Returns (candidate, outcome) where outcome is one of 'created',
    'updated', 'unchanged' or 'skipped'. Only pending candidates have their
    scores refreshed.
    """
    if not _lock_active_pair(key):
        return None, 'skipped'

    a_id, b_id = key
    values = {
        'name_similarity': score.name_similarity,
        'location_similarity': score.location_similarity,
        'confidence_score': score.confidence_score,
        'match_criteria': list(score.match_criteria),
    }

    candidate, created = insert_or_reselect(
        find=lambda: DuplicateCandidate.objects.filter(venue_a_id=a_id, venue_b_id=b_id).first(),
        create=lambda: DuplicateCandidate.objects.create(venue_a_id=a_id, venue_b_id=b_id, **values),
        label=f"duplicate candidate {a_id}/{b_id}",
    )
    if created:
        return candidate, 'created'

    if candidate.status != DuplicateCandidate.Status.PENDING:
        return candidate, 'unchanged'

    changed = [name for name, value in values.items() if getattr(candidate, name) != value]
    if not changed:
        return candidate, 'unchanged'

    for name in changed:
        setattr(candidate, name, values[name])
    candidate.save(update_fields=changed + ['updated_at'])
    return candidate, 'updated'


def _scan_bucket(bucket: Bucket, policy: DetectorPolicy, seen: Set, excluded: Set) -> Tuple[ScanReport, Set]:
    partial = ScanReport()
    local_seen = set()

    for a, b in bucket.pairs():
        key = pair_key(a.id, b.id)
        if key in seen or key in local_seen:
            continue
        local_seen.add(key)

        if key in excluded:
            partial.skipped_pairs += 1
            continue

        score = score_pair(a, b, policy)
        partial.pairs_compared += 1
        if score.confidence_score < policy.min_confidence:
            partial.below_threshold += 1
            continue

        candidate, outcome = store_candidate(key, score)
        if outcome == 'skipped':
            partial.skipped_pairs += 1
            continue
        if outcome == 'created':
            partial.candidates_created += 1
        elif outcome == 'updated':
            partial.candidates_updated += 1
        if candidate.status == DuplicateCandidate.Status.PENDING:
            partial.candidates.append(candidate)

    return partial, local_seen


def scan(policy: Optional[DetectorPolicy] = None) -> ScanReport:
    """
    Run one duplicate-detection pass over all active venues.

    Each bucket is written in its own transaction; a bucket that fails is
    logged, listed in ``failed_buckets`` and skipped.

    Returns:
        ScanReport whose ``candidates`` are the pending candidates that were
        created or refreshed by this pass.
    """
    policy = policy or DetectorPolicy.from_settings()
    report = ScanReport()

    snapshots = load_snapshots()
    report.venues_scanned = len(snapshots)
    excluded = excluded_pairs()
    buckets = build_buckets(snapshots, policy)
    seen: Set[Tuple[int, int]] = set()

    logger.info(f"Duplicate scan started: {len(snapshots)} venues in {len(buckets)} buckets")

    for bucket in buckets:
        try:
            with transaction.atomic():
                partial, local_seen = _scan_bucket(bucket, policy, seen, excluded)
        except Exception as exc:
            logger.exception(f"Duplicate scan failed for bucket {bucket.key}: {exc}")
            report.failed_buckets.append(bucket.key)
            continue

        seen |= local_seen
        report.buckets_scanned += 1
        report.pairs_compared += partial.pairs_compared
        report.below_threshold += partial.below_threshold
        report.skipped_pairs += partial.skipped_pairs
        report.candidates_created += partial.candidates_created
        report.candidates_updated += partial.candidates_updated
        report.candidates.extend(partial.candidates)

    logger.info(
        f"Duplicate scan finished: compared {report.pairs_compared} pairs, "
        f"created {report.candidates_created}, updated {report.candidates_updated}, "
        f"failed buckets {len(report.failed_buckets)}"
    )
    return report


# =============================================================================
# Review helpers
# =============================================================================


def band_filter(band: ConfidenceBand) -> Q:
    if band == ConfidenceBand.HIGH:
        return Q(confidence_score__gte=0.90)
    if band == ConfidenceBand.MEDIUM:
        return Q(confidence_score__gte=0.75, confidence_score__lt=0.90)
    return Q(confidence_score__lt=0.75)


def pending_candidates(band: Optional[ConfidenceBand] = None, status: str = DuplicateCandidate.Status.PENDING):
    """Candidates for review, most confident first."""
    queryset = DuplicateCandidate.objects.filter(status=status).select_related(
        'venue_a', 'venue_b', 'venue_a__city', 'venue_b__city',
    )
    if band is not None:
        queryset = queryset.filter(band_filter(band))
    return queryset.order_by('-confidence_score', 'id')


def duplicate_statistics() -> dict:
    """Candidate counts by band and status, plus average scores."""
    status = DuplicateCandidate.Status
    stats = DuplicateCandidate.objects.aggregate(
        total=Count('id'),
        pending=Count('id', filter=Q(status=status.PENDING)),
        reviewed=Count('id', filter=Q(status=status.REVIEWED)),
        merged=Count('id', filter=Q(status=status.MERGED)),
        rejected=Count('id', filter=Q(status=status.REJECTED)),
        high=Count('id', filter=band_filter(ConfidenceBand.HIGH)),
        medium=Count('id', filter=band_filter(ConfidenceBand.MEDIUM)),
        low=Count('id', filter=band_filter(ConfidenceBand.LOW)),
        avg_confidence=Avg('confidence_score'),
        avg_name_similarity=Avg('name_similarity'),
        avg_location_similarity=Avg('location_similarity'),
    )
    for key in ('avg_confidence', 'avg_name_similarity', 'avg_location_similarity'):
        stats[key] = round(stats[key], 4) if stats[key] is not None else None
    return stats
