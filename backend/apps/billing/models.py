"""
Billing models - plans, subscriptions, usage, invoices and payments.
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import F, Q
from django.db.models.functions import Round
from django.utils import timezone

from apps.core.models import TenantScopedModel, TimestampedModel

ZERO = Decimal("0.00")
DEFAULT_CURRENCY = "USD"


class BillingCycle(models.TextChoices):
    MONTHLY = "monthly", "Monthly"
    YEARLY = "yearly", "Yearly"


def money_field(**kwargs) -> models.DecimalField:
    """Decimal with 2 fractional digits, used for every amount."""
    return models.DecimalField(max_digits=10, decimal_places=2, **kwargs)


def currency_field() -> models.CharField:
    return models.CharField(
        max_length=3,
        default=DEFAULT_CURRENCY,
        help_text="ISO 4217 currency code",
    )


class Plan(TimestampedModel):
    """
    Subscription tier with prices and resource limits.

    Never deleted; retire a plan by clearing ``is_active``.
    """

    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.TextField(blank=True, null=True)
    price_monthly = money_field(default=ZERO)
    price_yearly = money_field(default=ZERO)

    max_users = models.PositiveIntegerField(default=1)
    max_projects = models.PositiveIntegerField(default=1)
    max_environments = models.PositiveIntegerField(default=1)
    max_schemas = models.PositiveIntegerField(default=1)
    max_test_records_per_schema = models.PositiveIntegerField(default=100)

    features = models.JSONField(
        default=list,
        blank=True,
        help_text="List of feature identifiers included in the plan",
    )
    external_plan_id_monthly = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Payment processor plan id for monthly billing",
    )
    external_plan_id_yearly = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Payment processor plan id for yearly billing",
    )
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["price_monthly", "name"]

    def __str__(self) -> str:
        return self.name

    def price_for(self, billing_cycle: str) -> Decimal:
        """Price charged per period of the given billing cycle."""
        if billing_cycle == BillingCycle.YEARLY:
            return self.price_yearly
        return self.price_monthly

    @property
    def limits(self) -> dict[str, int]:
        return {
            "max_users": self.max_users,
            "max_projects": self.max_projects,
            "max_environments": self.max_environments,
            "max_schemas": self.max_schemas,
            "max_test_records_per_schema": self.max_test_records_per_schema,
        }


class Subscription(TenantScopedModel):
    """
    An organization's purchase of a plan.

    History is kept: rows change status but are never deleted. At most one
    row per organization may be ``active``.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"
        SUSPENDED = "suspended", "Suspended"
        EXPIRED = "expired", "Expired"

    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    external_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Payment processor subscription id",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    billing_cycle = models.CharField(
        max_length=20,
        choices=BillingCycle.choices,
        default=BillingCycle.MONTHLY,
    )
    current_period_start = models.DateTimeField(help_text="Start of current billing period")
    current_period_end = models.DateTimeField(
        help_text="End of current billing period (next invoice date)"
    )
    trial_end = models.DateTimeField(null=True, blank=True)
    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="If True, subscription will cancel at period end",
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization"],
                condition=Q(status="active"),
                name="billing_one_active_subscription_per_org",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.organization.name} - {self.plan.name} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @property
    def period_elapsed(self) -> bool:
        """True once the current billing period has fully passed."""
        return timezone.now() >= self.current_period_end


class OrganizationUsage(TenantScopedModel):
    """
    Resource counters for one organization in one calendar-month period.

    Periods are half-open: [period_start, period_end).
    """

    COUNTER_FIELDS = (
        "users_count",
        "projects_count",
        "environments_count",
        "schemas_count",
        "test_records_count",
        "api_requests_count",
    )

    period_start = models.DateTimeField()
    period_end = models.DateTimeField()

    users_count = models.IntegerField(default=0)
    projects_count = models.IntegerField(default=0)
    environments_count = models.IntegerField(default=0)
    schemas_count = models.IntegerField(default=0)
    test_records_count = models.IntegerField(default=0)
    api_requests_count = models.IntegerField(default=0)

    recorded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-period_start"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "period_start", "period_end"],
                name="billing_usage_one_row_per_period",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.organization_id} usage {self.period_start:%Y-%m}"

    @property
    def counters(self) -> dict[str, int]:
        return {field: getattr(self, field) for field in self.COUNTER_FIELDS}


class Invoice(TenantScopedModel):
    """
    Invoice with line items.

    ``total_amount`` always equals ``amount + tax_amount``; ``paid_at`` is set
    exactly when the status becomes ``paid``.
    """

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SENT = "sent", "Sent"
        PAID = "paid", "Paid"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"

    UNPAID_STATUSES = (Status.DRAFT, Status.SENT)

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoices",
    )
    external_invoice_id = models.CharField(max_length=255, blank=True, null=True)
    invoice_number = models.CharField(
        max_length=50,
        unique=True,
        help_text="INV-<year>-<6-digit sequence>",
    )
    amount = money_field(help_text="Sum of line item totals")
    tax_amount = money_field(default=ZERO)
    total_amount = money_field(help_text="amount + tax_amount")
    currency = currency_field()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )
    billing_period_start = models.DateTimeField(null=True, blank=True)
    billing_period_end = models.DateTimeField(null=True, blank=True)
    due_date = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    invoice_url = models.URLField(max_length=500, blank=True, null=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            # SQLite adds decimals as floats
            models.CheckConstraint(
                condition=Q(total_amount=Round(F("amount") + F("tax_amount"), precision=2)),
                name="billing_invoice_total_consistent",
            ),
        ]

    def __str__(self) -> str:
        return self.invoice_number

    @property
    def is_paid(self) -> bool:
        return self.status == self.Status.PAID


class InvoiceLineItem(models.Model):
    """Single charge on an invoice. ``total_price = quantity * unit_price``."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    description = models.CharField(max_length=500)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = money_field()
    total_price = money_field()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gte=1),
                name="billing_line_item_quantity_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.description} x{self.quantity}"


class InvoiceSequence(models.Model):
    """
    Last issued invoice sequence value for a calendar year.

    Locked with SELECT ... FOR UPDATE while a number is issued.
    """

    year = models.PositiveIntegerField(unique=True)
    last_value = models.PositiveIntegerField(default=0)

    def __str__(self) -> str:
        return f"{self.year}: {self.last_value}"


class Payment(TenantScopedModel):
    """
    Payment attempt against an invoice and/or subscription.

    ``processed_at`` is set exactly when the status becomes ``completed``.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"

    class Method(models.TextChoices):
        PAYPAL = "paypal", "PayPal"

    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    external_payment_id = models.CharField(
        max_length=255,
        unique=True,
        blank=True,
        null=True,
        help_text="Payment processor payment id",
    )
    external_payer_id = models.CharField(max_length=255, blank=True, null=True)
    amount = money_field()
    currency = currency_field()
    payment_method = models.CharField(
        max_length=20,
        choices=Method.choices,
        default=Method.PAYPAL,
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    failure_reason = models.TextField(blank=True, null=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.amount} {self.currency} ({self.status})"


class PaymentMethod(TenantScopedModel):
    """
    Stored payer account for an organization.

    Deleting a method deactivates it. At most one active method per
    organization is the default.
    """

    payment_type = models.CharField(
        max_length=20,
        choices=Payment.Method.choices,
        default=Payment.Method.PAYPAL,
    )
    external_payer_id = models.CharField(max_length=255, blank=True, null=True)
    external_email = models.EmailField(blank=True, null=True)
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True, db_index=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-is_default", "-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization"],
                condition=Q(is_default=True, is_active=True),
                name="billing_one_default_payment_method_per_org",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.payment_type} {self.external_email or self.external_payer_id}"


class BillingEvent(TenantScopedModel):
    """Append-only audit record of a billing state change."""

    class EventType(models.TextChoices):
        SUBSCRIPTION_CREATED = "subscription_created", "Subscription created"
        SUBSCRIPTION_UPDATED = "subscription_updated", "Subscription updated"
        SUBSCRIPTION_CANCELLED = "subscription_cancelled", "Subscription cancelled"
        PAYMENT_SUCCEEDED = "payment_succeeded", "Payment succeeded"
        PAYMENT_FAILED = "payment_failed", "Payment failed"
        INVOICE_CREATED = "invoice_created", "Invoice created"
        PLAN_CHANGED = "plan_changed", "Plan changed"

    event_type = models.CharField(max_length=50, choices=EventType.choices, db_index=True)
    event_data = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    external_event_id = models.CharField(max_length=255, blank=True, null=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.event_type} @ {self.created_at:%Y-%m-%d %H:%M}"
