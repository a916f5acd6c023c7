"""
Venue admin configuration with Grappelli styling.

Reviewers work the duplicate queue from here: candidates are listed most
confident first, and the merge/reject actions call the merge manager so
the same locking and audit rules apply as in the API.
"""

from django.contrib import admin, messages
from django.db.models import Count

from venues.errors import VenueIdentityError
from venues.merge import merge, recommend_primary, reject_duplicate
from venues.models import DuplicateCandidate, MergeLogEntry, Venue


class MergedFilter(admin.SimpleListFilter):
    title = 'status'
    parameter_name = 'merged'

    def lookups(self, request, model_admin):
        return [('active', 'Active'), ('merged', 'Merged away')]

    def queryset(self, request, queryset):
        if self.value() == 'active':
            return queryset.active()
        if self.value() == 'merged':
            return queryset.merged()
        return queryset


@admin.register(Venue)
class VenueAdmin(admin.ModelAdmin):
    list_display = ['name', 'city', 'postcode', 'place_id', 'event_count', 'merged_into', 'updated_at']
    list_filter = [MergedFilter, 'city__country']
    search_fields = ['name', 'slug', 'address', 'postcode', 'place_id']
    readonly_fields = ['slug', 'deleted_at', 'deleted_by', 'merged_into', 'created_at', 'updated_at']
    raw_id_fields = ['city']
    list_select_related = ['city', 'merged_into']

    fieldsets = (
        ('Identity', {
            'fields': ('name', 'slug', 'city', 'place_id')
        }),
        ('Address', {
            'fields': ('address', 'postcode', 'latitude', 'longitude')
        }),
        ('Contact', {
            'fields': ('phone', 'website')
        }),
        ('Merge', {
            'fields': ('deleted_at', 'deleted_by', 'merged_into'),
            'classes': ('collapse',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(_event_count=Count('events'))

    def event_count(self, obj):
        return obj._event_count
    event_count.short_description = 'Events'
    event_count.admin_order_field = '_event_count'

    def has_delete_permission(self, request, obj=None):
        # Venues are only ever soft-deleted through a merge
        return False


def merge_candidates(modeladmin, request, queryset):
    """Merge each selected pending pair, keeping the recommended primary."""
    merged = 0
    for candidate in queryset.filter(status=DuplicateCandidate.Status.PENDING):
        primary_id, secondary_id = recommend_primary(candidate.venue_a_id, candidate.venue_b_id)
        try:
            merge(primary_id, secondary_id, actor=request.user.get_username(), notes=f"Admin merge of candidate {candidate.pk}")
            merged += 1
        except VenueIdentityError as e:
            modeladmin.message_user(request, f"Candidate {candidate.pk}: {e.code.value} ({e})", level=messages.WARNING)
    modeladmin.message_user(request, f"Merged {merged} pair(s)")
merge_candidates.short_description = "Merge selected pairs (recommended primary survives)"


def reject_candidates(modeladmin, request, queryset):
    """Mark selected pairs as not duplicates."""
    rejected = 0
    for candidate in queryset:
        _, created = reject_duplicate(candidate.venue_a_id, candidate.venue_b_id, actor=request.user.get_username())
        rejected += int(created)
    modeladmin.message_user(request, f"Rejected {rejected} pair(s)")
reject_candidates.short_description = "Not duplicates"


@admin.register(DuplicateCandidate)
class DuplicateCandidateAdmin(admin.ModelAdmin):
    list_display = ['venue_a', 'venue_b', 'confidence_score', 'band', 'match_criteria', 'status', 'updated_at']
    list_filter = ['status']
    search_fields = ['venue_a__name', 'venue_b__name']
    readonly_fields = [
        'venue_a', 'venue_b', 'name_similarity', 'location_similarity', 'confidence_score',
        'match_criteria', 'reviewed_at', 'reviewed_by', 'created_at', 'updated_at',
    ]
    list_select_related = ['venue_a', 'venue_b']
    ordering = ['-confidence_score']
    actions = [merge_candidates, reject_candidates]

    def band(self, obj):
        return obj.confidence_level.label
    band.short_description = 'Confidence'


@admin.register(MergeLogEntry)
class MergeLogEntryAdmin(admin.ModelAdmin):
    list_display = ['action', 'primary_venue', 'secondary_venue', 'actor', 'created_at']
    list_filter = ['action']
    search_fields = ['actor', 'notes', 'primary_venue__name', 'secondary_venue__name']
    list_select_related = ['primary_venue', 'secondary_venue']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
