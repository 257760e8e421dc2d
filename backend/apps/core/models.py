"""
Core models - shared base classes and utilities.
"""

import uuid

from django.db import models


class TimestampedModel(models.Model):
    """
    Abstract base model with a UUID primary key and created_at/updated_at timestamps.

    All business entities should inherit from this or TenantScopedModel.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class TenantScopedModel(TimestampedModel):
    """
    Abstract base model for all organization-scoped entities.

    Rows are owned by their organization and deleted with it.

    Usage:
        class Invoice(TenantScopedModel):
            invoice_number = models.CharField(max_length=50, unique=True)
    """

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.CASCADE,
        related_name="%(class)s_set",
    )

    class Meta:
        abstract = True
