"""
Organizations models - multi-tenancy foundation.
"""

from django.db import models
from django.utils import timezone

from apps.core.models import TenantScopedModel, TimestampedModel


class Organization(TimestampedModel):
    """
    Tenant entity and root of billing and membership data.

    Carries a denormalized copy of the current plan and billing cycle.
    The subscription manager keeps it in sync with the subscription record
    inside the same transaction; no database constraint ties them.
    """

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        SUSPENDED = "suspended", "Suspended"
        CANCELLED = "cancelled", "Cancelled"

    class SubscriptionStatus(models.TextChoices):
        NONE = "none", "None"
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"

    name = models.CharField(max_length=255)
    slug = models.SlugField(
        max_length=255,
        unique=True,
        help_text="URL-safe identifier, e.g. 'acme-corp'",
    )
    description = models.TextField(blank=True, null=True)
    logo_url = models.URLField(max_length=500, blank=True, null=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    created_by = models.ForeignKey(
        "accounts.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_organizations",
    )

    # Denormalized plan pointer
    plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="organizations",
        help_text="Current plan, mirrored from the active subscription",
    )
    billing_cycle = models.CharField(
        max_length=20,
        blank=True,
        default="",
        help_text="'monthly' or 'yearly'; empty until a plan is purchased",
    )
    subscription_status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.NONE,
    )
    next_billing_date = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.name


class Invitation(TenantScopedModel):
    """
    Pending invitation for an email address to join an organization.

    The token is single-use: accepting moves the invitation out of
    ``pending`` so a second accept no longer finds it.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        EXPIRED = "expired", "Expired"
        CANCELLED = "cancelled", "Cancelled"

    email = models.EmailField(db_index=True)
    role = models.CharField(max_length=20, default="member")
    token = models.CharField(
        max_length=64,
        unique=True,
        help_text="URL-safe random token sent in the invitation email",
    )
    invited_by = models.ForeignKey(
        "accounts.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    invited_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField(db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Invitation({self.email} -> {self.organization_id}, {self.status})"

    @property
    def is_expired(self) -> bool:
        return timezone.now() >= self.expires_at
