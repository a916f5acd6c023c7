"""
Management command to run the fuzzy duplicate scan synchronously.

Usage:
    python manage.py process_fuzzy_duplicates
    python manage.py process_fuzzy_duplicates --min-confidence 0.8 --radius-km 0.5
"""

from django.core.management.base import BaseCommand, CommandError

from venues.duplicates import DetectorPolicy, duplicate_statistics, scan


class Command(BaseCommand):
    help = 'Scan active venues for likely duplicates and store candidate pairs for review'

    def add_arguments(self, parser):
        parser.add_argument(
            '--min-confidence',
            type=float,
            help='Minimum confidence for storing a candidate (default from settings)',
        )
        parser.add_argument(
            '--radius-km',
            type=float,
            help='Distance beyond which location similarity is zero',
        )
        parser.add_argument(
            '--quiet',
            action='store_true',
            help='Only print the summary line',
        )

    def handle(self, *args, **options):
        overrides = {}
        if options['min_confidence'] is not None:
            overrides['min_confidence'] = options['min_confidence']
        if options['radius_km'] is not None:
            overrides['radius_km'] = options['radius_km']

        try:
            policy = DetectorPolicy.from_settings(overrides)
        except ValueError as e:
            raise CommandError(str(e))

        report = scan(policy)

        if not options['quiet']:
            for candidate in report.candidates:
                self.stdout.write(
                    f"  {candidate.confidence_level.value:<6} {candidate.confidence_score:.2f}  "
                    f"{candidate.venue_a.name} <-> {candidate.venue_b.name}  "
                    f"[{', '.join(candidate.match_criteria)}]"
                )

            stats = duplicate_statistics()
            self.stdout.write(
                f"\nCandidates: {stats['total']} total, {stats['pending']} pending "
                f"(high {stats['high']}, medium {stats['medium']}, low {stats['low']})"
            )

        if report.failed_buckets:
            self.stdout.write(self.style.WARNING(
                f"Failed buckets: {', '.join(report.failed_buckets)}"
            ))

        self.stdout.write(self.style.SUCCESS(
            f"Scanned {report.venues_scanned} venues: {report.pairs_compared} pairs compared, "
            f"{report.candidates_created} created, {report.candidates_updated} updated"
        ))
