"""
Celery configuration for the trivia venue directory.

Ingestion and the nightly duplicate scan run as Celery tasks; the beat
schedule lives in the database (django-celery-beat).
"""

import os
from celery import Celery

# Set Django settings module before importing anything else
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('triviadirectory')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all INSTALLED_APPS
app.autodiscover_tasks()
