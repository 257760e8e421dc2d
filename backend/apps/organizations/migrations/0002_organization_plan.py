import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("organizations", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="organization",
            name="plan",
            field=models.ForeignKey(
                blank=True,
                help_text="Current plan, mirrored from the active subscription",
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="organizations",
                to="billing.plan",
            ),
        ),
    ]
