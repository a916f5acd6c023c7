from django.contrib import admin

from .models import Event, ServiceToken


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ['title', 'venue', 'day_of_week', 'start_time', 'frequency']
    list_filter = ['day_of_week', 'frequency']
    search_fields = ['title', 'venue__name']
    raw_id_fields = ['venue']
    list_select_related = ['venue']


@admin.register(ServiceToken)
class ServiceTokenAdmin(admin.ModelAdmin):
    list_display = ['name', 'created_at']
    readonly_fields = ['token', 'created_at']
