from datetime import time

from django.db.models import ProtectedError
from django.test import TestCase
from model_bakery import baker

from events.models import Event, ServiceToken, generate_token
from locations.models import City, Country
from venues.models import Venue


class EventModelTests(TestCase):

    def setUp(self):
        gb = Country.objects.create(code="GB", name="United Kingdom")
        london = City.objects.create(name="London", slug="london", country=gb)
        self.venue = Venue.objects.create(name="The Crown Tavern", slug="the-crown-tavern", city=london)

    def test_str(self):
        event = Event.objects.create(
            venue=self.venue, title="Pub Quiz", day_of_week=Event.DayOfWeek.TUESDAY, start_time=time(19, 30),
        )
        self.assertEqual(str(event), "Pub Quiz (Tuesday 19:30)")
        self.assertEqual(event.frequency, Event.Frequency.WEEKLY)

    def test_ordered_by_day_then_time(self):
        late = Event.objects.create(venue=self.venue, title="Late", day_of_week=0, start_time=time(21, 0))
        thursday = Event.objects.create(venue=self.venue, title="Thu", day_of_week=3, start_time=time(19, 0))
        early = Event.objects.create(venue=self.venue, title="Early", day_of_week=0, start_time=time(18, 0))
        self.assertEqual(list(Event.objects.all()), [early, late, thursday])

    def test_venue_with_events_cannot_be_hard_deleted(self):
        Event.objects.create(venue=self.venue, title="Quiz", day_of_week=1, start_time=time(20, 0))
        with self.assertRaises(ProtectedError):
            self.venue.delete()


class ServiceTokenModelTests(TestCase):

    def test_token_generated(self):
        token = baker.make(ServiceToken, name="scraper")
        self.assertEqual(len(token.token), 40)
        self.assertNotEqual(generate_token(), generate_token())
