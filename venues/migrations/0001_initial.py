from django.db import migrations, models
import django.core.serializers.json
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('locations', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Venue',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text="Venue name (e.g., 'The Red Lion')", max_length=200)),
                ('slug', models.SlugField(help_text='URL-friendly venue identifier', max_length=255, unique=True)),
                ('address', models.CharField(blank=True, help_text='Street address as reported', max_length=500)),
                ('postcode', models.CharField(blank=True, help_text='Normalized postal code, NULL when unknown', max_length=20, null=True)),
                ('latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('place_id', models.CharField(blank=True, help_text="Geocoder's stable place identifier", max_length=255, null=True)),
                ('phone', models.CharField(blank=True, max_length=50)),
                ('website', models.CharField(blank=True, max_length=500)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('deleted_by', models.CharField(blank=True, max_length=150)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('city', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='venues', to='locations.city')),
                ('merged_into', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='merged_venues', to='venues.venue')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['latitude', 'longitude'], name='venue_lat_lng_idx'),
                    models.Index(fields=['deleted_at'], name='venue_deleted_at_idx'),
                    models.Index(fields=['city', 'name'], name='venue_city_name_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True), ('postcode__isnull', False)), fields=('name', 'postcode'), name='unique_active_venue_name_postcode'),
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True), ('postcode__isnull', True)), fields=('name', 'city'), name='unique_active_venue_name_city'),
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True), ('place_id__isnull', False)), fields=('place_id',), name='unique_active_venue_place_id'),
                    models.CheckConstraint(condition=models.Q(('merged_into__isnull', True), ('deleted_at__isnull', False), _connector='OR'), name='merged_venue_is_deleted'),
                    models.CheckConstraint(condition=models.Q(('merged_into', models.F('id')), _negated=True), name='venue_not_merged_into_self'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DuplicateCandidate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name_similarity', models.FloatField()),
                ('location_similarity', models.FloatField()),
                ('confidence_score', models.FloatField()),
                ('match_criteria', models.JSONField(blank=True, default=list)),
                ('status', models.CharField(choices=[('pending', 'Pending review'), ('reviewed', 'Reviewed'), ('merged', 'Merged'), ('rejected', 'Rejected (not duplicates)')], default='pending', max_length=20)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('reviewed_by', models.CharField(blank=True, max_length=150)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('venue_a', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='duplicate_candidates_as_a', to='venues.venue')),
                ('venue_b', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='duplicate_candidates_as_b', to='venues.venue')),
            ],
            options={
                'ordering': ['-confidence_score', 'id'],
                'indexes': [models.Index(fields=['status', '-confidence_score'], name='dup_status_confidence_idx')],
                'constraints': [
                    models.UniqueConstraint(fields=('venue_a', 'venue_b'), name='unique_duplicate_pair'),
                    models.CheckConstraint(condition=models.Q(('venue_a__lt', models.F('venue_b'))), name='duplicate_pair_ordered'),
                    models.CheckConstraint(condition=models.Q(('confidence_score__gte', 0), ('confidence_score__lte', 1)), name='duplicate_confidence_in_range'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MergeLogEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(choices=[('merge', 'Merge'), ('reject_duplicate', 'Not a duplicate')], max_length=30)),
                ('actor', models.CharField(max_length=150)),
                ('notes', models.TextField(blank=True)),
                ('metadata', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('primary_venue', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='merge_logs_as_primary', to='venues.venue')),
                ('secondary_venue', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='merge_logs_as_secondary', to='venues.venue')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'verbose_name_plural': 'merge log entries',
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('action', 'reject_duplicate')), fields=('primary_venue', 'secondary_venue', 'action'), name='unique_rejection_per_pair'),
                    models.CheckConstraint(condition=models.Q(('primary_venue', models.F('secondary_venue')), _negated=True), name='merge_log_distinct_venues'),
                ],
            },
        ),
    ]
