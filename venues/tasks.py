"""
Celery tasks for the venues app.

Handles ingestion of scraped venue reports and the scheduled duplicate scan.
"""

import logging
import time

from celery import shared_task
from django.conf import settings
from geopy.exc import GeocoderServiceError

from venues.errors import UniqueConstraintRace, VenueIdentityError

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def ingest_venue_report(self, report_data: dict, force_refresh: bool = False):
    """
    Resolve one scraped venue report into a canonical venue.

    Uniqueness races that outlived the in-transaction retry loop and
    geocoder outages are retried; rejected input is reported, not retried.

    Args:
        report_data: Loose scraper dict (name/title, address, phone, website, postcode)
        force_refresh: Rewrite the venue even when nothing changed
    """
    from venues.store import process_venue

    # Rate limiting for the geocoder
    time.sleep(getattr(settings, 'GEOCODE_DELAY', 0))

    try:
        venue = process_venue(report_data, force_refresh=force_refresh)
    except (UniqueConstraintRace, GeocoderServiceError) as exc:
        logger.warning(f"Retrying venue report {report_data.get('name') or report_data.get('title')!r}: {exc}")
        raise self.retry(exc=exc)
    except VenueIdentityError as exc:
        logger.warning(f"Rejected venue report {report_data!r}: {exc.code.value} {exc}")
        return {'status': 'rejected', 'error': exc.code.value, 'message': str(exc)}

    return {'status': 'success', 'venue_id': venue.pk, 'slug': venue.slug}


@shared_task
def scan_for_duplicates(policy_overrides: dict = None):
    """
    Run the fuzzy duplicate scan.

    Args:
        policy_overrides: DetectorPolicy fields overriding settings.VENUE_DUPLICATE_POLICY
    """
    from venues.duplicates import DetectorPolicy, scan

    policy = DetectorPolicy.from_settings(policy_overrides)
    report = scan(policy)

    status = 'partial' if report.failed_buckets else 'success'
    logger.info(f"Duplicate scan {status}: {report.candidates_created} new candidates")
    return {'status': status, **report.as_dict()}
