"""
Canonical country and city records that venues hang off.

Both are created lazily by the identity upsert pipeline the first time a
geocoded report mentions them and are never deleted.
"""

from django.db import models


class Country(models.Model):
    """Country keyed by its normalized (trimmed, uppercased) ISO code."""

    code = models.CharField(max_length=3, unique=True, help_text="ISO 3166-1 alpha-2 code (e.g., 'GB')")
    name = models.CharField(max_length=200, help_text="Display name (e.g., 'United Kingdom')")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'countries'

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class City(models.Model):
    """
    City within a country.

    The slug is globally unique. Two cities with the same name in different
    countries are told apart by a country-code suffix on the second slug
    (e.g., 'london' and 'london-ca').
    """

    name = models.CharField(max_length=200, help_text="City name as reported by the geocoder")
    slug = models.SlugField(max_length=220, unique=True, help_text="URL-friendly, globally unique city identifier")
    country = models.ForeignKey(Country, on_delete=models.PROTECT, related_name='cities')

    # Optional centroid
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'cities'
        indexes = [
            models.Index(fields=['country', 'name'], name='city_country_name_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.name}, {self.country.code}"
