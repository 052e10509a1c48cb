import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('drivers', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(default='pending', max_length=30)),
                ('assignment_status', models.CharField(blank=True, choices=[('', 'Unset'), ('searching', 'Searching'), ('broadcasting', 'Broadcasting'), ('offered', 'Offered (legacy single offer)'), ('accepted', 'Accepted'), ('failed_no_drivers', 'Failed - No Drivers')], db_index=True, default='', max_length=20)),
                ('order_number', models.CharField(blank=True, max_length=30)),
                ('customer_name', models.CharField(blank=True, max_length=100)),
                ('total_amount', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('pickup_latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('pickup_longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('rejected_by_drivers', models.JSONField(blank=True, default=list)),
                ('offered_driver_ids', models.JSONField(blank=True, default=list)),
                ('current_offered_at', models.DateTimeField(blank=True, null=True)),
                ('assignment_timeout', models.DateTimeField(blank=True, null=True)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('notification_sent_to_admin', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(blank=True, null=True)),
                ('accepted_driver', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='accepted_orders', to='drivers.driver')),
                ('current_offered_driver', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='drivers.driver')),
            ],
            options={
                'db_table': 'orders',
                'ordering': ['-created_at'],
            },
        ),
    ]
