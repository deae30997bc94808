# Generated manually
import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('donors', '0001_initial'),
        ('programs', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='DonatedItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('item_type', models.CharField(max_length=255)),
                ('category', models.CharField(db_index=True, max_length=255)),
                ('quantity', models.PositiveIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('current_status', models.CharField(choices=[('Received', 'Received'), ('Donated', 'Donated'), ('In storage facility', 'In storage facility'), ('Refurbished', 'Refurbished'), ('Item sold', 'Item sold')], db_index=True, default='Received', max_length=50)),
                ('date_donated', models.DateTimeField()),
                ('last_updated', models.DateTimeField(auto_now=True)),
                ('analysis_metadata', models.JSONField(blank=True, null=True)),
                ('donor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='donated_items', to='donors.donor')),
                ('program', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='donated_items', to='programs.program')),
            ],
            options={
                'db_table': 'donated_items',
                'ordering': ['-date_donated', '-id'],
                'indexes': [
                    models.Index(fields=['donor', 'date_donated'], name='donated_items_donor_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DonatedItemStatus',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status_type', models.CharField(choices=[('Received', 'Received'), ('Donated', 'Donated'), ('In storage facility', 'In storage facility'), ('Refurbished', 'Refurbished'), ('Item sold', 'Item sold')], max_length=50)),
                ('date_modified', models.DateTimeField()),
                ('image_urls', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('donated_item', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='statuses', to='donations.donateditem')),
            ],
            options={
                'db_table': 'donated_item_statuses',
                'ordering': ['date_modified', 'id'],
                'verbose_name_plural': 'donated item statuses',
            },
        ),
    ]
