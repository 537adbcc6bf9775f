from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("billing", "0002_add_billing_schedules"),
    ]

    operations = [
        migrations.AddField(
            model_name="webhookevent",
            name="outcome",
            field=models.JSONField(
                blank=True,
                default=dict,
                help_text="Handler result details, e.g. a refund shortfall",
            ),
        ),
    ]
