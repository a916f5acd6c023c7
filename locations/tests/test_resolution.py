"""
Tests for country and city find-or-create.
"""

from unittest.mock import patch

from django.db import IntegrityError
from django.test import TestCase

from locations.models import City, Country
from locations.services import find_or_create_city, find_or_create_country
from venues.errors import InvalidCityData, InvalidCountryData, SlugConflictUnresolvable, UniqueConstraintRace


class CountryResolutionTests(TestCase):

    def test_creates_country_on_first_sighting(self):
        country = find_or_create_country(" gb ", "United Kingdom")
        self.assertEqual(country.code, "GB")
        self.assertEqual(country.name, "United Kingdom")

    def test_reuses_country_by_normalized_code(self):
        first = find_or_create_country("GB", "United Kingdom")
        second = find_or_create_country("gb", "UK")
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Country.objects.count(), 1)

    def test_name_defaults_to_code(self):
        self.assertEqual(find_or_create_country("IE").name, "IE")

    def test_invalid_codes_rejected(self):
        for code in ("", None, "G", "GB1", "United Kingdom"):
            with self.subTest(code=code):
                with self.assertRaises(InvalidCountryData):
                    find_or_create_country(code, "Somewhere")
        self.assertEqual(Country.objects.count(), 0)

    def test_lost_insert_race_reselects_winner(self):
        """A concurrent insert between our lookup and our insert is re-selected, not surfaced."""
        winner = Country.objects.create(code="GB", name="United Kingdom")
        real_filter = Country.objects.filter
        calls = {'n': 0}

        def first_lookup_misses(*args, **kwargs):
            calls['n'] += 1
            if calls['n'] == 1:
                return real_filter(code="__none__")
            return real_filter(*args, **kwargs)

        with patch.object(Country.objects, 'filter', side_effect=first_lookup_misses):
            country = find_or_create_country("GB", "United Kingdom")

        self.assertEqual(country.pk, winner.pk)
        self.assertEqual(Country.objects.count(), 1)

    def test_race_budget_exhausted(self):
        with patch.object(Country.objects, 'create', side_effect=IntegrityError("duplicate key")):
            with self.assertRaises(UniqueConstraintRace):
                find_or_create_country("FR", "France")


class CityResolutionTests(TestCase):

    def setUp(self):
        self.gb = Country.objects.create(code="GB", name="United Kingdom")
        self.ca = Country.objects.create(code="CA", name="Canada")

    def test_creates_city(self):
        city = find_or_create_city("  London ", self.gb)
        self.assertEqual(city.name, "London")
        self.assertEqual(city.slug, "london")
        self.assertEqual(city.country, self.gb)

    def test_same_name_same_country_reused(self):
        first = find_or_create_city("London", self.gb)
        second = find_or_create_city("london", self.gb)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(City.objects.count(), 1)

    def test_same_name_other_country_disambiguated(self):
        uk = find_or_create_city("London", self.gb)
        ontario = find_or_create_city("London", self.ca)
        self.assertNotEqual(uk.pk, ontario.pk)
        self.assertEqual(ontario.slug, "london-ca")
        self.assertEqual(find_or_create_city("London", self.ca).pk, ontario.pk)

    def test_missing_name(self):
        with self.assertRaises(InvalidCityData):
            find_or_create_city("   ", self.gb)

    def test_slug_owned_by_other_country_is_inconsistent(self):
        # A Canadian city already sits on the disambiguated slug a British one would need
        City.objects.create(name="Springfield", slug="springfield", country=self.ca)
        City.objects.create(name="Springfield", slug="springfield-gb", country=self.ca)
        with self.assertRaises(InvalidCityData):
            find_or_create_city("Springfield", self.gb)

    def test_race_budget_exhausted_is_slug_conflict(self):
        with patch.object(City.objects, 'create', side_effect=IntegrityError("duplicate key")):
            with self.assertRaises(SlugConflictUnresolvable):
                find_or_create_city("Leeds", self.gb)
