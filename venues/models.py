"""
Venue identity models.

Venue is the canonical record trivia events hang off. DuplicateCandidate
stores scored pairs found by the nightly duplicate scan, and MergeLogEntry
is the append-only audit trail of merges and rejected pairs.
"""

from dataclasses import dataclass
from typing import Union

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from venues.errors import AlreadyMerged, InvalidMerge, MergeChainRejected


@dataclass(frozen=True)
class Active:
    """Venue is canonical and visible."""


@dataclass(frozen=True)
class MergedInto:
    """Venue was merged away; ``target_id`` is the canonical venue."""

    target_id: int


VenueStatus = Union[Active, MergedInto]


class VenueQuerySet(models.QuerySet):
    def active(self):
        return self.filter(deleted_at__isnull=True)

    def merged(self):
        return self.filter(merged_into__isnull=False)


class Venue(models.Model):
    """
    Canonical trivia venue.

    Identity rules (enforced by partial unique constraints over non-deleted rows):
    - (name, postcode) when a postcode is known
    - (name, city) when it is not
    - place_id when one is known

    A venue is only ever soft-deleted, as the losing side of a merge. The
    redirect in ``merged_into`` is written once and always points at a
    venue that is itself canonical.
    """

    # Core identity
    name = models.CharField(max_length=200, help_text="Venue name (e.g., 'The Red Lion')")
    slug = models.SlugField(max_length=255, unique=True, help_text="URL-friendly venue identifier")

    # Address
    address = models.CharField(max_length=500, blank=True, help_text="Street address as reported")
    postcode = models.CharField(max_length=20, null=True, blank=True, help_text="Normalized postal code, NULL when unknown")
    city = models.ForeignKey('locations.City', on_delete=models.PROTECT, related_name='venues')

    # Geocoding
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    place_id = models.CharField(max_length=255, null=True, blank=True, help_text="Geocoder's stable place identifier")

    # Contact
    phone = models.CharField(max_length=50, blank=True)
    website = models.CharField(max_length=500, blank=True)

    # Soft delete / merge redirect
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.CharField(max_length=150, blank=True)
    merged_into = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='merged_venues',
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = VenueQuerySet.as_manager()

    class Meta:
        indexes = [
            models.Index(fields=['latitude', 'longitude'], name='venue_lat_lng_idx'),
            models.Index(fields=['deleted_at'], name='venue_deleted_at_idx'),
            models.Index(fields=['city', 'name'], name='venue_city_name_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['name', 'postcode'],
                condition=Q(postcode__isnull=False, deleted_at__isnull=True),
                name='unique_active_venue_name_postcode',
            ),
            models.UniqueConstraint(
                fields=['name', 'city'],
                condition=Q(postcode__isnull=True, deleted_at__isnull=True),
                name='unique_active_venue_name_city',
            ),
            models.UniqueConstraint(
                fields=['place_id'],
                condition=Q(place_id__isnull=False, deleted_at__isnull=True),
                name='unique_active_venue_place_id',
            ),
            models.CheckConstraint(
                condition=Q(merged_into__isnull=True) | Q(deleted_at__isnull=False),
                name='merged_venue_is_deleted',
            ),
            models.CheckConstraint(
                condition=~Q(merged_into=F('id')),
                name='venue_not_merged_into_self',
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable venue string."""
        return f"{self.name} ({self.postcode or self.city_id})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_merged_into_id = instance.__dict__.get('merged_into_id')
        return instance

    def save(self, *args, **kwargs):
        """Refuse to rewrite an existing merge redirect."""
        loaded = getattr(self, '_loaded_merged_into_id', None)
        if loaded is not None and self.merged_into_id != loaded:
            raise AlreadyMerged(
                f"Venue {self.pk} already redirects to {loaded}",
                venue_id=self.pk,
                merged_into_id=loaded,
            )
        super().save(*args, **kwargs)
        self._loaded_merged_into_id = self.merged_into_id

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    @property
    def status(self) -> VenueStatus:
        if self.merged_into_id is not None:
            return MergedInto(self.merged_into_id)
        return Active()

    def canonical(self) -> "Venue":
        """Follow the merge redirect (at most one hop, chains are never written)."""
        return self.merged_into if self.merged_into_id is not None else self

    def mark_merged_into(self, target: "Venue", actor: str) -> None:
        """
        Soft-delete this venue and redirect it to ``target``.

        Raises:
            InvalidMerge: target is this venue.
            AlreadyMerged: this venue already carries a redirect or is deleted.
            MergeChainRejected: target is itself merged away or deleted.
        """
        if target.pk == self.pk:
            raise InvalidMerge("Cannot merge a venue into itself", venue_id=self.pk)
        if self.merged_into_id is not None or self.deleted_at is not None:
            raise AlreadyMerged(f"Venue {self.pk} is already merged", venue_id=self.pk)
        if target.merged_into_id is not None or target.deleted_at is not None:
            raise MergeChainRejected(
                f"Venue {target.pk} is merged away and cannot be a merge target",
                venue_id=self.pk,
                target_id=target.pk,
            )

        self.deleted_at = timezone.now()
        self.deleted_by = actor
        self.merged_into = target
        self.save(update_fields=['deleted_at', 'deleted_by', 'merged_into', 'updated_at'])


class ConfidenceBand(models.TextChoices):
    HIGH = 'high', 'High (>= 0.90)'
    MEDIUM = 'medium', 'Medium (0.75 - 0.89)'
    LOW = 'low', 'Low (< 0.75)'

    @classmethod
    def for_score(cls, score: float) -> "ConfidenceBand":
        if score >= 0.90:
            return cls.HIGH
        if score >= 0.75:
            return cls.MEDIUM
        return cls.LOW


class DuplicateCandidate(models.Model):
    """
    A scored pair of venues that may be the same place.

    Pairs are stored in canonical order (venue_a.id < venue_b.id) so that a
    pair has exactly one row regardless of the order it was discovered in.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending review'
        REVIEWED = 'reviewed', 'Reviewed'
        MERGED = 'merged', 'Merged'
        REJECTED = 'rejected', 'Rejected (not duplicates)'

    venue_a = models.ForeignKey(Venue, on_delete=models.PROTECT, related_name='duplicate_candidates_as_a')
    venue_b = models.ForeignKey(Venue, on_delete=models.PROTECT, related_name='duplicate_candidates_as_b')

    name_similarity = models.FloatField()
    location_similarity = models.FloatField()
    confidence_score = models.FloatField()
    match_criteria = models.JSONField(default=list, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.CharField(max_length=150, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-confidence_score', 'id']
        indexes = [
            models.Index(fields=['status', '-confidence_score'], name='dup_status_confidence_idx'),
        ]
        constraints = [
            models.UniqueConstraint(fields=['venue_a', 'venue_b'], name='unique_duplicate_pair'),
            models.CheckConstraint(condition=Q(venue_a__lt=F('venue_b')), name='duplicate_pair_ordered'),
            models.CheckConstraint(
                condition=Q(confidence_score__gte=0) & Q(confidence_score__lte=1),
                name='duplicate_confidence_in_range',
            ),
        ]

    def __str__(self) -> str:
        return f"{self.venue_a_id} ~ {self.venue_b_id} ({self.confidence_score:.2f}, {self.status})"

    def save(self, *args, **kwargs):
        """Store the pair in canonical (lower id first) order."""
        if self.venue_a_id and self.venue_b_id and self.venue_a_id > self.venue_b_id:
            self.venue_a_id, self.venue_b_id = self.venue_b_id, self.venue_a_id
        super().save(*args, **kwargs)

    @property
    def confidence_level(self) -> ConfidenceBand:
        return ConfidenceBand.for_score(self.confidence_score)

    @property
    def pair(self) -> tuple:
        return (self.venue_a_id, self.venue_b_id)


class MergeLogEntry(models.Model):
    """
    Immutable audit record of a merge or a rejected duplicate pair.

    For rejections the pair is stored in canonical order, and at most one
    rejection per pair can exist.
    """

    class Action(models.TextChoices):
        MERGE = 'merge', 'Merge'
        REJECT_DUPLICATE = 'reject_duplicate', 'Not a duplicate'

    action = models.CharField(max_length=30, choices=Action.choices)
    primary_venue = models.ForeignKey(Venue, on_delete=models.PROTECT, related_name='merge_logs_as_primary')
    secondary_venue = models.ForeignKey(Venue, on_delete=models.PROTECT, related_name='merge_logs_as_secondary')
    actor = models.CharField(max_length=150)
    notes = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name_plural = 'merge log entries'
        constraints = [
            models.UniqueConstraint(
                fields=['primary_venue', 'secondary_venue', 'action'],
                condition=Q(action='reject_duplicate'),
                name='unique_rejection_per_pair',
            ),
            models.CheckConstraint(
                condition=~Q(primary_venue=F('secondary_venue')),
                name='merge_log_distinct_venues',
            ),
        ]

    def __str__(self) -> str:
        return f"{self.action}: {self.secondary_venue_id} -> {self.primary_venue_id} by {self.actor}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Merge log entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Merge log entries are immutable")
