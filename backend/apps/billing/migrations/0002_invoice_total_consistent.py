from django.db import migrations, models
from django.db.models.functions import Round


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.CheckConstraint(
                condition=models.Q(
                    total_amount=Round(models.F("amount") + models.F("tax_amount"), precision=2)
                ),
                name="billing_invoice_total_consistent",
            ),
        ),
    ]
