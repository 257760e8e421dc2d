"""
Billing event trail.

Every subscription, invoice and payment state change appends a
BillingEvent. Call ``record_billing_event`` inside the same
``transaction.atomic()`` block as the change so both commit or neither.
"""

from typing import TYPE_CHECKING, Any

import structlog
from django.db import models
from django.utils import timezone

from apps.billing.models import BillingEvent
from apps.core.logging import get_logger

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = get_logger(__name__)


def record_billing_event(
    event_type: str,
    aggregate: models.Model,
    data: dict[str, Any] | None = None,
    actor: "User | None" = None,
    external_event_id: str | None = None,
) -> BillingEvent:
    """
    Append a billing event for an organization-scoped aggregate.

    Args:
        event_type: One of BillingEvent.EventType
        aggregate: Subscription, Invoice or Payment the event is about
        data: Event-specific payload
        actor: User who caused the change (None for system changes)
        external_event_id: Processor event id, when the change came from one

    Returns:
        The created BillingEvent
    """
    ctx = structlog.contextvars.get_contextvars()
    payload = {
        "aggregate_type": aggregate.__class__.__name__.lower(),
        "aggregate_id": str(aggregate.pk),
        "actor_id": str(actor.pk) if actor is not None else None,
        "request_id": ctx.get("request_id"),
        **(data or {}),
    }

    event = BillingEvent.objects.create(
        organization_id=aggregate.organization_id,  # type: ignore[attr-defined]
        event_type=event_type,
        event_data=payload,
        external_event_id=external_event_id,
        processed_at=timezone.now(),
    )
    logger.debug(
        "billing_event_recorded",
        event_type=event_type,
        organization_id=str(event.organization_id),
        aggregate_id=payload["aggregate_id"],
    )
    return event
