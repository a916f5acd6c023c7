"""
Django admin configuration for Country and City.
"""

from django.contrib import admin
from django.db.models import Count

from locations.models import City, Country


@admin.register(Country)
class CountryAdmin(admin.ModelAdmin):
    """Admin interface for Country records."""

    list_display = ['code', 'name', 'city_count', 'created_at']
    search_fields = ['code', 'name']
    readonly_fields = ['created_at', 'updated_at']

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(_city_count=Count('cities'))

    def city_count(self, obj):
        return obj._city_count
    city_count.short_description = 'Cities'
    city_count.admin_order_field = '_city_count'


@admin.register(City)
class CityAdmin(admin.ModelAdmin):
    """Admin interface for City records."""

    list_display = ['name', 'slug', 'country', 'latitude', 'longitude']
    list_filter = ['country']
    search_fields = ['name', 'slug']
    readonly_fields = ['slug', 'created_at', 'updated_at']
    list_select_related = ['country']

    fieldsets = (
        ('Identity', {
            'fields': ('name', 'slug', 'country')
        }),
        ('Centroid', {
            'fields': ('latitude', 'longitude')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )
