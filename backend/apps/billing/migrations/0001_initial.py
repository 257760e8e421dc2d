import uuid
from decimal import Decimal

import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


def _uuid_pk():
    return (
        "id",
        models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False),
    )


def _timestamps():
    return [
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


def _organization_fk():
    return (
        "organization",
        models.ForeignKey(
            on_delete=django.db.models.deletion.CASCADE,
            related_name="%(class)s_set",
            to="organizations.organization",
        ),
    )


def _money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=10, **kwargs)


def _currency():
    return models.CharField(default="USD", help_text="ISO 4217 currency code", max_length=3)


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("organizations", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Plan",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                ("name", models.CharField(max_length=100)),
                ("slug", models.SlugField(max_length=100, unique=True)),
                ("description", models.TextField(blank=True, null=True)),
                ("price_monthly", _money(default=Decimal("0.00"))),
                ("price_yearly", _money(default=Decimal("0.00"))),
                ("max_users", models.PositiveIntegerField(default=1)),
                ("max_projects", models.PositiveIntegerField(default=1)),
                ("max_environments", models.PositiveIntegerField(default=1)),
                ("max_schemas", models.PositiveIntegerField(default=1)),
                ("max_test_records_per_schema", models.PositiveIntegerField(default=100)),
                (
                    "features",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="List of feature identifiers included in the plan",
                    ),
                ),
                (
                    "external_plan_id_monthly",
                    models.CharField(
                        blank=True,
                        help_text="Payment processor plan id for monthly billing",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "external_plan_id_yearly",
                    models.CharField(
                        blank=True,
                        help_text="Payment processor plan id for yearly billing",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
            ],
            options={"ordering": ["price_monthly", "name"]},
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "external_subscription_id",
                    models.CharField(
                        help_text="Payment processor subscription id",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("active", "Active"),
                            ("cancelled", "Cancelled"),
                            ("suspended", "Suspended"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "billing_cycle",
                    models.CharField(
                        choices=[("monthly", "Monthly"), ("yearly", "Yearly")],
                        default="monthly",
                        max_length=20,
                    ),
                ),
                (
                    "current_period_start",
                    models.DateTimeField(help_text="Start of current billing period"),
                ),
                (
                    "current_period_end",
                    models.DateTimeField(
                        help_text="End of current billing period (next invoice date)"
                    ),
                ),
                ("trial_end", models.DateTimeField(blank=True, null=True)),
                (
                    "cancel_at_period_end",
                    models.BooleanField(
                        default=False,
                        help_text="If True, subscription will cancel at period end",
                    ),
                ),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                _organization_fk(),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="billing.plan",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.AddConstraint(
            model_name="subscription",
            constraint=models.UniqueConstraint(
                condition=models.Q(("status", "active")),
                fields=("organization",),
                name="billing_one_active_subscription_per_org",
            ),
        ),
        migrations.CreateModel(
            name="OrganizationUsage",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                ("period_start", models.DateTimeField()),
                ("period_end", models.DateTimeField()),
                ("users_count", models.IntegerField(default=0)),
                ("projects_count", models.IntegerField(default=0)),
                ("environments_count", models.IntegerField(default=0)),
                ("schemas_count", models.IntegerField(default=0)),
                ("test_records_count", models.IntegerField(default=0)),
                ("api_requests_count", models.IntegerField(default=0)),
                ("recorded_at", models.DateTimeField(default=django.utils.timezone.now)),
                _organization_fk(),
            ],
            options={"ordering": ["-period_start"]},
        ),
        migrations.AddConstraint(
            model_name="organizationusage",
            constraint=models.UniqueConstraint(
                fields=("organization", "period_start", "period_end"),
                name="billing_usage_one_row_per_period",
            ),
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                ("external_invoice_id", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "invoice_number",
                    models.CharField(
                        help_text="INV-<year>-<6-digit sequence>", max_length=50, unique=True
                    ),
                ),
                ("amount", _money(help_text="Sum of line item totals")),
                ("tax_amount", _money(default=Decimal("0.00"))),
                ("total_amount", _money(help_text="amount + tax_amount")),
                ("currency", _currency()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("paid", "Paid"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("billing_period_start", models.DateTimeField(blank=True, null=True)),
                ("billing_period_end", models.DateTimeField(blank=True, null=True)),
                ("due_date", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("invoice_url", models.URLField(blank=True, max_length=500, null=True)),
                _organization_fk(),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="invoices",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="InvoiceLineItem",
            fields=[
                _uuid_pk(),
                ("description", models.CharField(max_length=500)),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("unit_price", _money()),
                ("total_price", _money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="billing.invoice",
                    ),
                ),
            ],
            options={"ordering": ["created_at"]},
        ),
        migrations.AddConstraint(
            model_name="invoicelineitem",
            constraint=models.CheckConstraint(
                condition=models.Q(("quantity__gte", 1)),
                name="billing_line_item_quantity_positive",
            ),
        ),
        migrations.CreateModel(
            name="InvoiceSequence",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("year", models.PositiveIntegerField(unique=True)),
                ("last_value", models.PositiveIntegerField(default=0)),
            ],
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "external_payment_id",
                    models.CharField(
                        blank=True,
                        help_text="Payment processor payment id",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("external_payer_id", models.CharField(blank=True, max_length=255, null=True)),
                ("amount", _money()),
                ("currency", _currency()),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("paypal", "PayPal")], default="paypal", max_length=20
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("failure_reason", models.TextField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payments",
                        to="billing.invoice",
                    ),
                ),
                _organization_fk(),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payments",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="PaymentMethod",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "payment_type",
                    models.CharField(
                        choices=[("paypal", "PayPal")], default="paypal", max_length=20
                    ),
                ),
                ("external_payer_id", models.CharField(blank=True, max_length=255, null=True)),
                ("external_email", models.EmailField(blank=True, max_length=254, null=True)),
                ("is_default", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                _organization_fk(),
            ],
            options={"ordering": ["-is_default", "-created_at"]},
        ),
        migrations.AddConstraint(
            model_name="paymentmethod",
            constraint=models.UniqueConstraint(
                condition=models.Q(("is_active", True), ("is_default", True)),
                fields=("organization",),
                name="billing_one_default_payment_method_per_org",
            ),
        ),
        migrations.CreateModel(
            name="BillingEvent",
            fields=[
                _uuid_pk(),
                *_timestamps(),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("subscription_created", "Subscription created"),
                            ("subscription_updated", "Subscription updated"),
                            ("subscription_cancelled", "Subscription cancelled"),
                            ("payment_succeeded", "Payment succeeded"),
                            ("payment_failed", "Payment failed"),
                            ("invoice_created", "Invoice created"),
                            ("plan_changed", "Plan changed"),
                        ],
                        db_index=True,
                        max_length=50,
                    ),
                ),
                (
                    "event_data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
                ("external_event_id", models.CharField(blank=True, max_length=255, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                _organization_fk(),
            ],
            options={"ordering": ["-created_at"]},
        ),
    ]
