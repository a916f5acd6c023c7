"""
Tests for country/city normalization and slug allocation.
"""

from django.test import TestCase
from model_bakery import baker

from locations.models import City, Country
from locations.services import haversine_distance, normalize_city_name, normalize_country_code
from locations.slugs import allocate_city_slug, allocate_venue_slug, slugify_name, venue_slug_candidates


class NormalizationTests(TestCase):
    """Test normalize_country_code and normalize_city_name."""

    def test_country_code_trimmed_and_uppercased(self):
        self.assertEqual(normalize_country_code("  gb "), "GB")
        self.assertEqual(normalize_country_code("Us"), "US")

    def test_country_code_none(self):
        self.assertEqual(normalize_country_code(None), "")

    def test_city_name_whitespace_collapsed(self):
        self.assertEqual(normalize_city_name("  New   York "), "New York")
        self.assertEqual(normalize_city_name("London\t"), "London")

    def test_city_name_keeps_casing(self):
        self.assertEqual(normalize_city_name("St. Albans"), "St. Albans")

    def test_city_name_empty(self):
        self.assertEqual(normalize_city_name("   "), "")
        self.assertEqual(normalize_city_name(None), "")


class SlugTests(TestCase):
    """Test city and venue slug allocation."""

    def setUp(self):
        self.gb = Country.objects.create(code="GB", name="United Kingdom")
        self.ca = Country.objects.create(code="CA", name="Canada")

    def test_slugify_name(self):
        self.assertEqual(slugify_name("The King's Head"), "the-kings-head")
        self.assertEqual(slugify_name("!!!"), "unnamed")

    def test_city_slug_base_when_free(self):
        self.assertEqual(allocate_city_slug("London", self.gb), "london")

    def test_city_slug_same_country_reuses_base(self):
        City.objects.create(name="London", slug="london", country=self.gb)
        self.assertEqual(allocate_city_slug("London", self.gb), "london")

    def test_city_slug_other_country_gets_suffix(self):
        City.objects.create(name="London", slug="london", country=self.gb)
        self.assertEqual(allocate_city_slug("London", self.ca), "london-ca")

    def test_venue_slug_candidates_order(self):
        candidates = list(venue_slug_candidates("Red Lion", "oxford"))
        self.assertEqual(candidates[:4], ["red-lion", "red-lion-oxford", "red-lion-oxford-2", "red-lion-oxford-3"])

    def test_venue_slug_skips_taken(self):
        oxford = City.objects.create(name="Oxford", slug="oxford", country=self.gb)
        baker.make('venues.Venue', name="Red Lion", slug="red-lion", city=oxford, postcode="OX1 1AA")
        self.assertEqual(allocate_venue_slug("Red Lion", oxford), "red-lion-oxford")

        baker.make('venues.Venue', name="Red Lion", slug="red-lion-oxford", city=oxford, postcode="OX2 2BB")
        self.assertEqual(allocate_venue_slug("Red Lion", oxford), "red-lion-oxford-2")


class HaversineTests(TestCase):
    def test_zero_distance(self):
        self.assertEqual(haversine_distance(51.5, -0.1, 51.5, -0.1), 0.0)

    def test_known_distance(self):
        # London to Paris is roughly 344 km
        distance = haversine_distance(51.5074, -0.1278, 48.8566, 2.3522)
        self.assertAlmostEqual(distance, 343.5, delta=2.0)

    def test_symmetric(self):
        self.assertAlmostEqual(
            haversine_distance(51.5, -0.1, 51.6, -0.2),
            haversine_distance(51.6, -0.2, 51.5, -0.1),
        )
