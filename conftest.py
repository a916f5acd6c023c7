"""
pytest configuration for the trivia venue directory.

Initializes Django before any tests are collected so that model imports
and model_bakery work at module import time.
"""

import os
import django


def pytest_configure():
    """Initialize Django with test settings before pytest collects tests."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.test_settings")
    django.setup()
