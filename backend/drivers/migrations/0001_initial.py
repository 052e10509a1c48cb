import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Driver',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(blank=True, max_length=100)),
                ('is_online', models.BooleanField(db_index=True, default=False)),
                ('is_available', models.BooleanField(db_index=True, default=False)),
                ('current_latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=10, null=True)),
                ('current_longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=10, null=True)),
                ('last_location_update', models.DateTimeField(default=django.utils.timezone.now)),
                ('notification_address', models.CharField(blank=True, max_length=100)),
                ('current_offer_expires_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'db_table': 'delivery_drivers',
                'ordering': ['id'],
            },
        ),
    ]
