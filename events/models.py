from django.db import models
import secrets


class Event(models.Model):
    """
    A recurring trivia night at a venue.

    Events are the records re-pointed when duplicate venues are merged, so
    the venue reference is PROTECTed: a venue with events is never
    hard-deleted.
    """

    class DayOfWeek(models.IntegerChoices):
        MONDAY = 0, "Monday"
        TUESDAY = 1, "Tuesday"
        WEDNESDAY = 2, "Wednesday"
        THURSDAY = 3, "Thursday"
        FRIDAY = 4, "Friday"
        SATURDAY = 5, "Saturday"
        SUNDAY = 6, "Sunday"

    class Frequency(models.TextChoices):
        WEEKLY = "weekly", "Weekly"
        BIWEEKLY = "biweekly", "Every other week"
        MONTHLY = "monthly", "Monthly"
        IRREGULAR = "irregular", "Irregular"

    venue = models.ForeignKey(
        'venues.Venue',
        on_delete=models.PROTECT,
        related_name='events',
    )
    title = models.CharField(max_length=255)
    day_of_week = models.PositiveSmallIntegerField(choices=DayOfWeek.choices)
    start_time = models.TimeField()
    frequency = models.CharField(max_length=20, choices=Frequency.choices, default=Frequency.WEEKLY)
    source_url = models.URLField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['day_of_week', 'start_time']
        indexes = [
            models.Index(fields=['venue', 'day_of_week'], name='event_venue_day_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.get_day_of_week_display()} {self.start_time:%H:%M})"


def generate_token():
    return secrets.token_hex(20)


class ServiceToken(models.Model):
    name = models.CharField(max_length=100, unique=True)
    token = models.CharField(max_length=40, unique=True, default=generate_token)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name
