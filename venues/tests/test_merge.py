"""
Tests for merging, rejecting and reviewing duplicate venues.
"""

from datetime import time
from decimal import Decimal
from unittest.mock import patch

from django.db import OperationalError
from django.test import TestCase

from events.models import Event
from venues.errors import AlreadyMerged, InvalidMerge, MergeChainRejected, MergeConflict, VenueErrorCode, VenueNotFound
from venues.merge import merge, merge_history, preview_merge, recommend_primary, reject_duplicate
from venues.models import DuplicateCandidate, MergeLogEntry, Venue
from venues.tests.test_models import VenueFixtureMixin


class MergeFixtureMixin(VenueFixtureMixin):

    def make_event(self, venue, title="Quiz Night"):
        return Event.objects.create(
            venue=venue,
            title=title,
            day_of_week=Event.DayOfWeek.TUESDAY,
            start_time=time(19, 30),
        )

    def make_candidate(self, a, b, confidence=0.95):
        return DuplicateCandidate.objects.create(
            venue_a=a, venue_b=b, name_similarity=confidence,
            location_similarity=1.0, confidence_score=confidence, match_criteria=['similar_name'],
        )


class MergeTests(MergeFixtureMixin, TestCase):

    def setUp(self):
        self.primary = self.make_venue(
            "The King's Head", address="1 High Street", latitude=Decimal('51.523300'),
            longitude=Decimal('-0.105100'),
        )
        self.secondary = self.make_venue(
            "Kings Head Pub", address="1 High St", postcode="EC1R 0EG", phone="020 7946 0000",
            place_id="ChIJkings",
        )
        for n in range(3):
            self.make_event(self.secondary, title=f"Quiz {n}")

    def test_merge_moves_events_and_soft_deletes(self):
        result = merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        self.assertEqual(result.pk, self.primary.pk)
        self.assertEqual(Event.objects.filter(venue=self.primary).count(), 3)
        self.assertFalse(Event.objects.filter(venue=self.secondary).exists())

        secondary = Venue.objects.get(pk=self.secondary.pk)
        self.assertIsNotNone(secondary.deleted_at)
        self.assertEqual(secondary.deleted_by, "reviewer")
        self.assertEqual(secondary.merged_into_id, self.primary.pk)
        self.assertEqual(secondary.canonical().pk, self.primary.pk)
        self.assertTrue(Venue.objects.get(pk=self.primary.pk).is_active)

    def test_merge_writes_audit_entry(self):
        merge(self.primary.pk, self.secondary.pk, actor="reviewer", notes="same pub")

        entry = MergeLogEntry.objects.get()
        self.assertEqual(entry.action, MergeLogEntry.Action.MERGE)
        self.assertEqual(entry.primary_venue_id, self.primary.pk)
        self.assertEqual(entry.secondary_venue_id, self.secondary.pk)
        self.assertEqual(entry.actor, "reviewer")
        self.assertEqual(entry.notes, "same pub")
        self.assertEqual(entry.metadata['records_moved'], {'events.Event': 3})
        self.assertEqual(entry.metadata['strategy'], 'combine')
        self.assertEqual(entry.metadata['secondary_before']['name'], "Kings Head Pub")

    def test_combine_fills_empty_fields_only(self):
        primary = merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        self.assertEqual(primary.address, "1 High Street")
        self.assertEqual(primary.postcode, "EC1R 0EG")
        self.assertEqual(primary.phone, "020 7946 0000")
        self.assertEqual(primary.place_id, "ChIJkings")
        self.assertEqual(
            MergeLogEntry.objects.get().metadata['fields_taken'],
            ['phone', 'place_id', 'postcode'],
        )

    def test_prefer_primary_takes_nothing(self):
        primary = merge(self.primary.pk, self.secondary.pk, actor="reviewer", metadata_strategy="prefer_primary")
        self.assertEqual(primary.phone, "")
        self.assertIsNone(primary.place_id)

    def test_prefer_secondary_never_replaces_place_id(self):
        Venue.objects.filter(pk=self.primary.pk).update(place_id="ChIJprimary")

        primary = merge(self.primary.pk, self.secondary.pk, actor="reviewer", metadata_strategy="prefer_secondary")

        self.assertEqual(primary.address, "1 High St")
        self.assertEqual(primary.place_id, "ChIJprimary")

    def test_pair_candidate_marked_merged(self):
        candidate = self.make_candidate(self.primary, self.secondary)

        merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        candidate.refresh_from_db()
        self.assertEqual(candidate.status, DuplicateCandidate.Status.MERGED)
        self.assertEqual(candidate.reviewed_by, "reviewer")

    def test_other_candidates_repointed_to_primary(self):
        third = self.make_venue("King Head")
        fourth = self.make_venue("Kings Heads")
        moved = self.make_candidate(self.secondary, third)
        clashing = self.make_candidate(self.secondary, fourth)
        existing = self.make_candidate(self.primary, fourth)

        merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        moved.refresh_from_db()
        self.assertEqual(moved.pair, (self.primary.pk, third.pk))
        self.assertFalse(DuplicateCandidate.objects.filter(pk=clashing.pk).exists())
        self.assertTrue(DuplicateCandidate.objects.filter(pk=existing.pk).exists())
        self.assertEqual(MergeLogEntry.objects.get().metadata['candidates_removed'], 1)

    def test_second_merge_of_same_secondary_rejected(self):
        merge(self.primary.pk, self.secondary.pk, actor="reviewer")
        other = self.make_venue("The Crown")

        with self.assertRaises(AlreadyMerged):
            merge(other.pk, self.secondary.pk, actor="reviewer")

        self.assertEqual(Venue.objects.get(pk=self.secondary.pk).merged_into_id, self.primary.pk)
        self.assertEqual(MergeLogEntry.objects.count(), 1)

    def test_merge_into_merged_venue_rejected(self):
        merge(self.primary.pk, self.secondary.pk, actor="reviewer")
        other = self.make_venue("The Crown")

        with self.assertRaises(AlreadyMerged):
            merge(self.secondary.pk, other.pk, actor="reviewer")

    def test_merge_chain_rejected(self):
        alias = self.make_venue("Kings Hd")
        merge(self.secondary.pk, alias.pk, actor="reviewer")

        with self.assertRaises(MergeChainRejected) as ctx:
            merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        self.assertIn(f"choose venue {self.secondary.pk} as the primary", str(ctx.exception))
        self.assertEqual(ctx.exception.context["suggested_primary_id"], self.secondary.pk)
        self.assertTrue(Venue.objects.get(pk=self.secondary.pk).is_active)

    def test_locked_venues_fail_fast_without_partial_state(self):
        locked = OperationalError('could not obtain lock on row in relation "venues_venue"')
        with patch.object(Venue.objects, 'select_for_update', side_effect=locked):
            with self.assertRaises(MergeConflict) as ctx:
                merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        self.assertEqual(ctx.exception.code, VenueErrorCode.MERGE_CONFLICT)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertTrue(Venue.objects.get(pk=self.secondary.pk).is_active)
        self.assertEqual(Event.objects.filter(venue=self.secondary).count(), 3)
        self.assertFalse(MergeLogEntry.objects.exists())

    def test_self_merge_rejected(self):
        with self.assertRaises(InvalidMerge):
            merge(self.primary.pk, self.primary.pk, actor="reviewer")

    def test_unknown_strategy_rejected(self):
        with self.assertRaises(InvalidMerge):
            merge(self.primary.pk, self.secondary.pk, actor="reviewer", metadata_strategy="newest")
        self.assertTrue(Venue.objects.get(pk=self.secondary.pk).is_active)

    def test_missing_venue(self):
        with self.assertRaises(VenueNotFound):
            merge(self.primary.pk, 999999, actor="reviewer")

    def test_failed_merge_changes_nothing(self):
        alias = self.make_venue("Kings Hd")
        merge(self.secondary.pk, alias.pk, actor="reviewer")

        with self.assertRaises(MergeChainRejected):
            merge(self.primary.pk, self.secondary.pk, actor="reviewer")

        self.assertEqual(Event.objects.filter(venue=self.secondary).count(), 3)
        self.assertEqual(MergeLogEntry.objects.count(), 1)


class RejectDuplicateTests(MergeFixtureMixin, TestCase):

    def setUp(self):
        self.a = self.make_venue("Red Lion")
        self.b = self.make_venue("Red Lion Clerkenwell")

    def test_rejection_is_idempotent_in_either_order(self):
        entry, created = reject_duplicate(self.b.pk, self.a.pk, actor="reviewer", notes="different pubs")
        again, created_again = reject_duplicate(self.a.pk, self.b.pk, actor="someone-else")

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(entry.pk, again.pk)
        self.assertEqual((entry.primary_venue_id, entry.secondary_venue_id), (self.a.pk, self.b.pk))
        self.assertEqual(MergeLogEntry.objects.count(), 1)

    def test_rejection_closes_candidate(self):
        candidate = self.make_candidate(self.a, self.b, 0.8)

        reject_duplicate(self.a.pk, self.b.pk, actor="reviewer")

        candidate.refresh_from_db()
        self.assertEqual(candidate.status, DuplicateCandidate.Status.REJECTED)
        self.assertEqual(candidate.reviewed_by, "reviewer")
        self.assertIsNotNone(candidate.reviewed_at)

    def test_rejection_leaves_venues_untouched(self):
        reject_duplicate(self.a.pk, self.b.pk, actor="reviewer")
        self.assertEqual(Venue.objects.active().count(), 2)

    def test_self_rejection(self):
        with self.assertRaises(InvalidMerge):
            reject_duplicate(self.a.pk, self.a.pk, actor="reviewer")

    def test_missing_venue(self):
        with self.assertRaises(VenueNotFound):
            reject_duplicate(self.a.pk, 999999, actor="reviewer")


class PreviewAndRecommendTests(MergeFixtureMixin, TestCase):

    def test_preview_reports_without_writing(self):
        primary = self.make_venue("The Crown", phone="111")
        secondary = self.make_venue("Crown Tavern", phone="222", website="https://crown.example")
        for _ in range(3):
            self.make_event(secondary)

        preview = preview_merge(primary.pk, secondary.pk)

        self.assertEqual(preview.events_to_migrate, 3)
        self.assertEqual([c['field'] for c in preview.conflicts], ['name', 'phone'])
        self.assertEqual(preview.fields_to_take, ['website'])
        self.assertEqual(preview.blocking, [])
        self.assertEqual(preview.recommendation, 'review_conflicts')
        self.assertEqual(Event.objects.filter(venue=secondary).count(), 3)
        self.assertTrue(Venue.objects.get(pk=secondary.pk).is_active)

    def test_preview_safe(self):
        primary = self.make_venue("The Crown")
        secondary = self.make_venue("The Crown", city=self.leeds)
        self.assertEqual(preview_merge(primary.pk, secondary.pk).recommendation, 'safe')

    def test_preview_blocked_for_merged_venue(self):
        primary = self.make_venue("The Crown")
        secondary = self.make_venue("Crown Tavern")
        merge(primary.pk, secondary.pk, actor="reviewer")
        other = self.make_venue("Crown Inn")

        preview = preview_merge(other.pk, secondary.pk)

        self.assertEqual(preview.blocking, ['already_merged'])
        self.assertEqual(preview.recommendation, 'blocked')

    def test_recommend_primary_prefers_complete_venue(self):
        bare = self.make_venue("Crown")
        for _ in range(3):
            self.make_event(bare)
        complete = self.make_venue("The Crown", place_id="p1", phone="111")

        self.assertEqual(recommend_primary(bare.pk, complete.pk), (complete.pk, bare.pk))

    def test_recommend_primary_tie_goes_to_older(self):
        first = self.make_venue("Crown")
        second = self.make_venue("The Crown")
        self.assertEqual(recommend_primary(second.pk, first.pk), (first.pk, second.pk))


class MergeHistoryTests(MergeFixtureMixin, TestCase):

    def setUp(self):
        self.a = self.make_venue("The Crown")
        self.b = self.make_venue("Crown Tavern")
        self.c = self.make_venue("Red Lion")
        merge(self.a.pk, self.b.pk, actor="reviewer")
        reject_duplicate(self.a.pk, self.c.pk, actor="reviewer")

    def test_newest_first(self):
        actions = [entry.action for entry in merge_history()]
        self.assertEqual(actions, [MergeLogEntry.Action.REJECT_DUPLICATE, MergeLogEntry.Action.MERGE])

    def test_filter_by_venue(self):
        entries = list(merge_history(venue_id=self.c.pk))
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, MergeLogEntry.Action.REJECT_DUPLICATE)

    def test_filter_by_action(self):
        entries = list(merge_history(action=MergeLogEntry.Action.MERGE))
        self.assertEqual([e.secondary_venue_id for e in entries], [self.b.pk])

    def test_limit(self):
        self.assertEqual(len(merge_history(limit=1)), 1)
