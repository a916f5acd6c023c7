"""Tests for venue Celery tasks."""

from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from geopy.exc import GeocoderServiceError

from venues.errors import UniqueConstraintRace
from venues.models import DuplicateCandidate, Venue
from venues.reports import GeocodeResult
from venues.tasks import ingest_venue_report, scan_for_duplicates
from venues.tests.test_models import VenueFixtureMixin

LONDON = GeocodeResult(
    country_code='GB',
    country_name='United Kingdom',
    city_name='London',
    latitude=Decimal('51.523300'),
    longitude=Decimal('-0.105100'),
)


class IngestVenueReportTests(TestCase):

    @patch('venues.store.geocode_address', return_value=LONDON)
    def test_success(self, mock_geocode):
        result = ingest_venue_report({'title': 'The Crown Tavern', 'address': '43 Clerkenwell Green, London'})

        venue = Venue.objects.get()
        self.assertEqual(result, {'status': 'success', 'venue_id': venue.pk, 'slug': 'the-crown-tavern'})
        mock_geocode.assert_called_once_with('43 Clerkenwell Green, London')

    @patch('venues.store.geocode_address', return_value=LONDON)
    def test_rejected_report_is_not_retried(self, mock_geocode):
        result = ingest_venue_report({'name': 'The Crown Tavern'})

        self.assertEqual(result['status'], 'rejected')
        self.assertEqual(result['error'], 'missing_address')
        mock_geocode.assert_not_called()
        self.assertFalse(Venue.objects.exists())

    @patch('venues.store.geocode_address', return_value=None)
    def test_ungeocodable_address_rejected(self, mock_geocode):
        result = ingest_venue_report({'name': 'The Crown Tavern', 'address': 'Nowhere'})
        self.assertEqual(result['error'], 'missing_geocoordinates')

    @patch('venues.store.process_venue', side_effect=UniqueConstraintRace("still colliding"))
    def test_unique_race_is_retried(self, mock_process):
        # Called directly, Celery's retry re-raises the exception it was given
        with self.assertRaises(UniqueConstraintRace):
            ingest_venue_report({'name': 'The Crown Tavern', 'address': '43 Clerkenwell Green'})

    @patch('venues.store.geocode_address', side_effect=GeocoderServiceError("timed out"))
    def test_geocoder_outage_is_retried(self, mock_geocode):
        with self.assertRaises(GeocoderServiceError):
            ingest_venue_report({'name': 'The Crown Tavern', 'address': '43 Clerkenwell Green'})


class ScanForDuplicatesTests(VenueFixtureMixin, TestCase):

    def setUp(self):
        self.make_venue("The King's Head", latitude=Decimal('51.523300'), longitude=Decimal('-0.105100'))
        self.make_venue("Kings Head Pub", latitude=Decimal('51.523800'), longitude=Decimal('-0.105100'))

    def test_scan_task(self):
        result = scan_for_duplicates()

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['venues_scanned'], 2)
        self.assertEqual(result['candidates_created'], 1)
        self.assertEqual(result['candidate_ids'], [DuplicateCandidate.objects.get().pk])

    def test_scan_task_policy_overrides(self):
        result = scan_for_duplicates({'min_confidence': 1.0, 'name_weight': 0.5, 'location_weight': 0.5})
        self.assertEqual(result['status'], 'success')

    @patch('venues.duplicates.score_pair', side_effect=RuntimeError("boom"))
    def test_partial_scan(self, mock_score):
        result = scan_for_duplicates()

        self.assertEqual(result['status'], 'partial')
        self.assertTrue(result['failed_buckets'])
        self.assertFalse(DuplicateCandidate.objects.exists())
