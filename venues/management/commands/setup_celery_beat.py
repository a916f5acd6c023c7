"""
Management command to set up Celery Beat periodic tasks.

Run this after migrations to configure scheduled tasks.
"""

from django.core.management.base import BaseCommand
from django_celery_beat.models import PeriodicTask, CrontabSchedule
import json


class Command(BaseCommand):
    help = 'Set up Celery Beat periodic tasks for the application'

    def handle(self, *args, **options):
        self.stdout.write('Setting up Celery Beat periodic tasks...')

        nightly_3am, _ = CrontabSchedule.objects.get_or_create(minute='0', hour='3', day_of_week='*', day_of_month='*', month_of_year='*')

        tasks = [
            {
                'name': 'Scan for duplicate venues',
                'task': 'venues.tasks.scan_for_duplicates',
                'crontab': nightly_3am,
                'kwargs': json.dumps({}),
                'description': 'Score candidate duplicate venue pairs nightly at 3 AM',
            },
        ]

        created_count = 0
        updated_count = 0

        for task_config in tasks:
            name = task_config['name']
            defaults = {
                'task': task_config['task'],
                'enabled': True,
                'description': task_config.get('description', ''),
                'kwargs': task_config.get('kwargs', '{}'),
                'crontab': task_config['crontab'],
                'interval': None,
            }

            task, created = PeriodicTask.objects.update_or_create(name=name, defaults=defaults)

            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'  Created: {name}'))
            else:
                updated_count += 1
                self.stdout.write(f'  Updated: {name}')

        self.stdout.write(self.style.SUCCESS(f'\nDone! Created {created_count}, updated {updated_count} periodic tasks.'))
        self.stdout.write('\nConfigured tasks:')
        for task in PeriodicTask.objects.filter(enabled=True):
            schedule = task.crontab or task.interval
            self.stdout.write(f'  - {task.name}: {task.task} ({schedule})')
