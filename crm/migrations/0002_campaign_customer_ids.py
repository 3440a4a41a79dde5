from django.db import migrations, models

import crm.models


def copy_customers(apps, schema_editor):
    Campaign = apps.get_model('crm', 'Campaign')
    for campaign in Campaign.objects.prefetch_related('customers'):
        campaign.customer_ids = [str(customer.id) for customer in campaign.customers.order_by('created_at', 'email')]
        campaign.save(update_fields=['customer_ids'])


class Migration(migrations.Migration):

    dependencies = [
        ('crm', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='campaign',
            name='customer_ids',
            field=models.JSONField(blank=True, default=crm.models.empty_list),
        ),
        migrations.RunPython(copy_customers, migrations.RunPython.noop),
        migrations.RemoveField(
            model_name='campaign',
            name='customers',
        ),
    ]
