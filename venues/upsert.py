"""
Optimistic find-or-create shared by countries, cities, venues and
duplicate candidates.

Concurrent writers racing on the same natural key are resolved by the
database: the loser's INSERT hits a unique constraint, its savepoint is
rolled back, and the row the winner committed is re-selected.
"""

import logging

from django.conf import settings
from django.db import IntegrityError, transaction

from venues.errors import UniqueConstraintRace

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def max_attempts() -> int:
    return getattr(settings, 'VENUE_INSERT_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS)


def insert_or_reselect(find, create, *, attempts=None, label="row"):
    """
    Return ``(obj, created)`` for a natural key.

    Args:
        find: Zero-argument callable returning the existing row or None.
        create: Zero-argument callable inserting and returning a new row.
            Called inside its own savepoint so an IntegrityError leaves the
            surrounding transaction usable.
        attempts: Loop bound; defaults to settings.VENUE_INSERT_MAX_ATTEMPTS.
        label: Used in log messages and in the raised error.

    Raises:
        UniqueConstraintRace: every attempt lost the race and the re-select
            still found nothing.
    """
    attempts = attempts or max_attempts()
    last_error = None

    for attempt in range(1, attempts + 1):
        existing = find()
        if existing is not None:
            return existing, False

        try:
            with transaction.atomic():
                return create(), True
        except IntegrityError as exc:
            last_error = exc
            logger.info(f"Lost insert race for {label} (attempt {attempt}/{attempts}), re-selecting")

    existing = find()
    if existing is not None:
        return existing, False

    logger.warning(f"Giving up on {label} after {attempts} attempts: {last_error}")
    raise UniqueConstraintRace(f"Could not insert or re-select {label}", label=label, attempts=attempts)
