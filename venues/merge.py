"""
Merge and soft-delete manager.

Consolidates confirmed duplicate venues and records reviewer decisions:

- merge(): move every record referencing the secondary venue onto the
  primary, soft-delete the secondary with a redirect, append an audit entry
- reject_duplicate(): record that a pair is *not* a duplicate (idempotent)
- preview_merge() / recommend_primary(): read-only helpers for reviewers
- merge_history(): the audit trail

Both venue rows are locked with SELECT ... FOR UPDATE NOWAIT for the whole
merge, so two merges (or a merge and a duplicate scan) touching the same
venue never interleave; the loser fails fast with merge_conflict.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Q
from django.utils import timezone

from events.models import Event
from venues.errors import (
    AlreadyMerged,
    InvalidMerge,
    MergeChainRejected,
    MergeConflict,
    VenueErrorCode,
    VenueNotFound,
)
from venues.models import DuplicateCandidate, MergeLogEntry, Venue
from venues.upsert import insert_or_reselect

logger = logging.getLogger(__name__)

METADATA_STRATEGIES = ('combine', 'prefer_primary', 'prefer_secondary')

# Fields copied between venues by the metadata strategies
MERGEABLE_FIELDS = ('address', 'postcode', 'latitude', 'longitude', 'phone', 'website', 'place_id')

# Fields compared when previewing a merge
CONFLICT_FIELDS = ('name', 'address', 'postcode', 'phone', 'website', 'place_id')

SNAPSHOT_FIELDS = (
    'id', 'name', 'slug', 'address', 'postcode', 'latitude', 'longitude',
    'place_id', 'city_id', 'phone', 'website',
)

# Reverse relations that belong to the merge machinery itself
MERGE_RELATIONS = {
    'merged_venues',
    'duplicate_candidates_as_a',
    'duplicate_candidates_as_b',
    'merge_logs_as_primary',
    'merge_logs_as_secondary',
}


def _is_empty(value) -> bool:
    return value is None or value == ""


def snapshot(venue: Venue) -> dict:
    return {name: getattr(venue, name) for name in SNAPSHOT_FIELDS}


def _lock_venues(*venue_ids) -> Dict[int, Venue]:
    """Lock the given venues in id order, failing fast if another writer holds them."""
    try:
        venues = list(
            Venue.objects.select_for_update(nowait=True)
            .filter(pk__in=venue_ids)
            .order_by('pk')
        )
    except OperationalError as exc:
        raise MergeConflict(
            f"Venues {sorted(venue_ids)} are locked by a concurrent writer",
            venue_ids=sorted(venue_ids),
        ) from exc
    return {venue.pk: venue for venue in venues}


def _check_mergeable(primary: Venue, secondary: Venue) -> None:
    for venue in (primary, secondary):
        if venue.merged_into_id is not None or venue.deleted_at is not None:
            raise AlreadyMerged(
                f"Venue {venue.pk} is already merged into {venue.merged_into_id}",
                venue_id=venue.pk,
                merged_into_id=venue.merged_into_id,
            )
    if Venue.objects.filter(merged_into_id=secondary.pk).exists():
        raise MergeChainRejected(
            f"Venue {secondary.pk} has absorbed earlier merges and cannot be merged away; "
            f"choose venue {secondary.pk} as the primary instead",
            venue_id=secondary.pk,
            suggested_primary_id=secondary.pk,
        )


def _repoint_references(primary: Venue, secondary: Venue) -> Dict[str, int]:
    """Move every foreign key pointing at ``secondary`` to ``primary``."""
    moved = {}
    for relation in Venue._meta.related_objects:
        if not relation.one_to_many or relation.get_accessor_name() in MERGE_RELATIONS:
            continue
        model = relation.related_model
        field_name = relation.field.name
        count = model._default_manager.filter(**{field_name: secondary}).update(**{field_name: primary})
        if count:
            moved[model._meta.label] = count
    return moved


def _repoint_candidates(primary: Venue, secondary: Venue, actor: str) -> Tuple[int, int]:
    """
    Re-point duplicate candidates from ``secondary`` to ``primary``.

    The candidate for the merged pair itself is marked merged. A candidate
    that would duplicate an existing pair after re-pointing is removed.
    Returns (repointed, removed).
    """
    repointed = removed = 0
    now = timezone.now()

    candidates = DuplicateCandidate.objects.select_for_update().filter(
        Q(venue_a=secondary) | Q(venue_b=secondary)
    )
    for candidate in candidates:
        other_id = candidate.venue_b_id if candidate.venue_a_id == secondary.pk else candidate.venue_a_id

        if other_id == primary.pk:
            candidate.status = DuplicateCandidate.Status.MERGED
            candidate.reviewed_at = now
            candidate.reviewed_by = actor
            candidate.save(update_fields=['status', 'reviewed_at', 'reviewed_by', 'updated_at'])
            continue

        low, high = sorted((primary.pk, other_id))
        if DuplicateCandidate.objects.filter(venue_a_id=low, venue_b_id=high).exists():
            candidate.delete()
            removed += 1
            continue

        candidate.venue_a_id, candidate.venue_b_id = low, high
        candidate.save(update_fields=['venue_a', 'venue_b', 'updated_at'])
        repointed += 1

    return repointed, removed


def merged_field_values(primary: Venue, secondary: Venue, strategy: str) -> dict:
    """
    Field values the primary should take from the secondary.

    combine fills the primary's empty fields; prefer_secondary also
    overwrites filled ones, except a stored place_id, which is never replaced.
    """
    if strategy not in METADATA_STRATEGIES:
        raise InvalidMerge(f"Unknown metadata strategy '{strategy}'", strategy=strategy)
    if strategy == 'prefer_primary':
        return {}

    updates = {}
    for name in MERGEABLE_FIELDS:
        incoming = getattr(secondary, name)
        current = getattr(primary, name)
        if _is_empty(incoming) or incoming == current:
            continue
        if _is_empty(current) or (strategy == 'prefer_secondary' and name != 'place_id'):
            updates[name] = incoming
    return updates


def merge(
    primary_id: int,
    secondary_id: int,
    actor: str,
    notes: str = "",
    *,
    metadata_strategy: str = "combine",
) -> Venue:
    """
    Merge ``secondary`` into ``primary``.

    Args:
        primary_id: Venue that survives.
        secondary_id: Venue that is soft-deleted and redirected.
        actor: Reviewer or automated policy performing the merge.
        notes: Free text stored in the audit entry.
        metadata_strategy: 'combine' (default), 'prefer_primary' or 'prefer_secondary'.

    Returns:
        The refreshed primary venue.

    Raises:
        InvalidMerge, VenueNotFound, AlreadyMerged, MergeChainRejected, MergeConflict
    """
    if primary_id == secondary_id:
        raise InvalidMerge("Cannot merge a venue into itself", venue_id=primary_id)
    if metadata_strategy not in METADATA_STRATEGIES:
        raise InvalidMerge(f"Unknown metadata strategy '{metadata_strategy}'", strategy=metadata_strategy)

    try:
        with transaction.atomic():
            venues = _lock_venues(primary_id, secondary_id)
            for venue_id in (primary_id, secondary_id):
                if venue_id not in venues:
                    raise VenueNotFound(f"Venue {venue_id} does not exist", venue_id=venue_id)
            primary, secondary = venues[primary_id], venues[secondary_id]

            _check_mergeable(primary, secondary)

            primary_before, secondary_before = snapshot(primary), snapshot(secondary)
            moved = _repoint_references(primary, secondary)
            repointed, removed = _repoint_candidates(primary, secondary, actor)

            # Soft-delete first so the secondary's postcode/place_id are free for the primary
            secondary.mark_merged_into(primary, actor)

            updates = merged_field_values(primary, secondary, metadata_strategy)
            if updates:
                for name, value in updates.items():
                    setattr(primary, name, value)
                primary.save(update_fields=list(updates) + ['updated_at'])

            MergeLogEntry.objects.create(
                action=MergeLogEntry.Action.MERGE,
                primary_venue=primary,
                secondary_venue=secondary,
                actor=actor,
                notes=notes,
                metadata={
                    'strategy': metadata_strategy,
                    'primary_before': primary_before,
                    'secondary_before': secondary_before,
                    'fields_taken': sorted(updates),
                    'records_moved': moved,
                    'candidates_repointed': repointed,
                    'candidates_removed': removed,
                },
            )
    except IntegrityError as exc:
        raise MergeConflict(
            f"Merging {secondary_id} into {primary_id} violates a constraint: {exc}",
            primary_id=primary_id,
            secondary_id=secondary_id,
        ) from exc

    logger.info(
        f"Merged venue {secondary_id} into {primary_id} by {actor} "
        f"(moved {sum(moved.values())} records, strategy {metadata_strategy})"
    )
    primary.refresh_from_db()
    return primary


def reject_duplicate(venue_a_id: int, venue_b_id: int, actor: str, notes: str = "") -> Tuple[MergeLogEntry, bool]:
    """
    Record that two venues are not duplicates.

    Idempotent: a repeated rejection of the same pair (in either order)
    returns the existing entry with ``created=False``.

    Returns:
        (entry, created)
    """
    if venue_a_id == venue_b_id:
        raise InvalidMerge("A venue cannot be a duplicate of itself", venue_id=venue_a_id)

    low, high = sorted((venue_a_id, venue_b_id))

    with transaction.atomic():
        venues = Venue.objects.in_bulk([low, high])
        for venue_id in (low, high):
            if venue_id not in venues:
                raise VenueNotFound(f"Venue {venue_id} does not exist", venue_id=venue_id)

        rejections = MergeLogEntry.objects.filter(
            action=MergeLogEntry.Action.REJECT_DUPLICATE,
            primary_venue_id=low,
            secondary_venue_id=high,
        )
        entry, created = insert_or_reselect(
            find=rejections.first,
            create=lambda: MergeLogEntry.objects.create(
                action=MergeLogEntry.Action.REJECT_DUPLICATE,
                primary_venue_id=low,
                secondary_venue_id=high,
                actor=actor,
                notes=notes,
                metadata={'names': [venues[low].name, venues[high].name]},
            ),
            label=f"rejection {low}/{high}",
        )

        now = timezone.now()
        DuplicateCandidate.objects.filter(
            venue_a_id=low,
            venue_b_id=high,
            status__in=[DuplicateCandidate.Status.PENDING, DuplicateCandidate.Status.REVIEWED],
        ).update(
            status=DuplicateCandidate.Status.REJECTED,
            reviewed_at=now,
            reviewed_by=actor,
            updated_at=now,
        )

    if created:
        logger.info(f"Pair {low}/{high} rejected as duplicates by {actor}")
    else:
        logger.info(f"{VenueErrorCode.ALREADY_REJECTED.value}: pair {low}/{high} (by {actor})")
    return entry, created


# =============================================================================
# Review helpers
# =============================================================================


@dataclass
class MergePreview:
    primary: dict
    secondary: dict
    events_to_migrate: int
    conflicts: List[dict] = field(default_factory=list)
    fields_to_take: List[str] = field(default_factory=list)
    blocking: List[str] = field(default_factory=list)
    recommended_primary_id: Optional[int] = None

    @property
    def recommendation(self) -> str:
        if self.blocking:
            return 'blocked'
        if not self.conflicts and self.events_to_migrate <= 10:
            return 'safe'
        if len(self.conflicts) <= 3 and self.events_to_migrate <= 50:
            return 'review_conflicts'
        return 'manual_review'


def _get_venues(*venue_ids) -> Dict[int, Venue]:
    venues = Venue.objects.in_bulk(list(venue_ids))
    for venue_id in venue_ids:
        if venue_id not in venues:
            raise VenueNotFound(f"Venue {venue_id} does not exist", venue_id=venue_id)
    return venues


def preview_merge(primary_id: int, secondary_id: int, metadata_strategy: str = "combine") -> MergePreview:
    """Describe what merge() would do without writing anything."""
    if primary_id == secondary_id:
        raise InvalidMerge("Cannot merge a venue into itself", venue_id=primary_id)

    venues = _get_venues(primary_id, secondary_id)
    primary, secondary = venues[primary_id], venues[secondary_id]

    conflicts = [
        {'field': name, 'primary': getattr(primary, name), 'secondary': getattr(secondary, name)}
        for name in CONFLICT_FIELDS
        if not _is_empty(getattr(primary, name))
        and not _is_empty(getattr(secondary, name))
        and getattr(primary, name) != getattr(secondary, name)
    ]

    blocking = []
    if primary.merged_into_id is not None or secondary.merged_into_id is not None:
        blocking.append(VenueErrorCode.ALREADY_MERGED.value)
    elif Venue.objects.filter(merged_into_id=secondary.pk).exists():
        blocking.append(VenueErrorCode.MERGE_CHAIN_REJECTED.value)

    recommended, _ = recommend_primary(primary_id, secondary_id)

    return MergePreview(
        primary=snapshot(primary),
        secondary=snapshot(secondary),
        events_to_migrate=Event.objects.filter(venue_id=secondary_id).count(),
        conflicts=conflicts,
        fields_to_take=sorted(merged_field_values(primary, secondary, metadata_strategy)),
        blocking=blocking,
        recommended_primary_id=recommended,
    )


def primary_score(venue: Venue, event_count: int, now: Optional[datetime] = None) -> float:
    """Completeness + activity + recency score used to pick the surviving venue."""
    now = now or timezone.now()
    completeness = sum(1 for name in MERGEABLE_FIELDS if not _is_empty(getattr(venue, name)))
    activity = min(event_count, 10)
    age_days = (now - venue.updated_at).days if venue.updated_at else 365
    recency = max(0, 5 - age_days // 30)
    place_bonus = 5 if venue.place_id else 0
    return completeness + activity + recency + place_bonus


def recommend_primary(venue_a_id: int, venue_b_id: int) -> Tuple[int, int]:
    """
    Suggest which of two venues should survive a merge.

    Returns (primary_id, secondary_id). Ties go to the older venue.
    """
    venues = _get_venues(venue_a_id, venue_b_id)
    now = timezone.now()
    scores = {
        venue_id: primary_score(venue, Event.objects.filter(venue_id=venue_id).count(), now)
        for venue_id, venue in venues.items()
    }
    ordered = sorted(scores, key=lambda venue_id: (-scores[venue_id], venue_id))
    return ordered[0], ordered[1]


def merge_history(
    venue_id: Optional[int] = None,
    action: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 100,
):
    """Audit entries, newest first, optionally filtered by venue, action and date range."""
    queryset = MergeLogEntry.objects.select_related('primary_venue', 'secondary_venue')
    if venue_id is not None:
        queryset = queryset.filter(Q(primary_venue_id=venue_id) | Q(secondary_venue_id=venue_id))
    if action:
        queryset = queryset.filter(action=action)
    if since:
        queryset = queryset.filter(created_at__gte=since)
    if until:
        queryset = queryset.filter(created_at__lte=until)
    return queryset.order_by('-created_at', '-id')[:limit]
