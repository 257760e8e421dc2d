"""
Subscription manager - owns each organization's subscription record.

State machine per organization:

    (none)    --create-->               pending
    pending   --activate-->             active
    active    --change_plan-->          active  (plan/cycle updated in place)
    active    --cancel(at_period_end)-> active  (cancel_at_period_end=True)
    active    --cancel(immediately)-->  cancelled (cancelled_at set)
    active|cancelled (flagged, period not elapsed) --reactivate--> active

Every mutation runs in one transaction together with the organization's
denormalized plan pointer and a BillingEvent. The organization row is
locked first so concurrent writers for one organization serialize.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from dateutil.relativedelta import relativedelta
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.accounts.models import User
from apps.billing.events import record_billing_event
from apps.billing.exceptions import (
    ActiveSubscriptionExistsError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)
from apps.billing.models import (
    BillingCycle,
    BillingEvent,
    OrganizationUsage,
    Plan,
    Subscription,
)
from apps.billing.plans import get_plan
from apps.billing.usage import current_period, get_current_usage
from apps.core.exceptions import ValidationError
from apps.core.logging import get_logger
from apps.organizations.models import Organization

logger = get_logger(__name__)

PERIOD_LENGTHS = {
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.YEARLY: relativedelta(years=1),
}

ORGANIZATION_PLAN_FIELDS = [
    "plan",
    "billing_cycle",
    "subscription_status",
    "next_billing_date",
    "updated_at",
]


@dataclass
class SubscriptionUsage:
    """Current-period usage next to the limits of the organization's plan."""

    usage: dict[str, int]
    limits: dict[str, int] | None
    plan: Plan | None
    period_start: datetime
    period_end: datetime


def validate_billing_cycle(billing_cycle: str) -> str:
    if billing_cycle not in BillingCycle.values:
        raise ValidationError("billing_cycle must be 'monthly' or 'yearly'")
    return billing_cycle


def compute_period_end(period_start: datetime, billing_cycle: str) -> datetime:
    """One calendar month or one calendar year after ``period_start``."""
    return period_start + PERIOD_LENGTHS[BillingCycle(billing_cycle)]


def _lock_organization(organization: Organization) -> None:
    """Take the organization row lock for the rest of the current transaction."""
    Organization.objects.select_for_update().filter(pk=organization.pk).first()


def _sync_organization(
    organization: Organization,
    subscription: Subscription,
    subscription_status: str = Organization.SubscriptionStatus.ACTIVE,
) -> None:
    organization.plan = subscription.plan
    organization.billing_cycle = subscription.billing_cycle
    organization.subscription_status = subscription_status
    organization.next_billing_date = (
        subscription.current_period_end
        if subscription_status == Organization.SubscriptionStatus.ACTIVE
        else None
    )
    organization.save(update_fields=ORGANIZATION_PLAN_FIELDS)


def get_subscription(organization: Organization) -> Subscription | None:
    """Latest subscription of any status, or None."""
    return (
        Subscription.objects.select_related("plan")
        .filter(organization=organization)
        .order_by("-created_at")
        .first()
    )


def get_active_subscription(organization: Organization) -> Subscription | None:
    """Latest ``active`` subscription, or None."""
    return (
        Subscription.objects.select_related("plan")
        .filter(organization=organization, status=Subscription.Status.ACTIVE)
        .order_by("-created_at")
        .first()
    )


def get_active_subscription_or_404(organization: Organization) -> Subscription:
    subscription = get_active_subscription(organization)
    if subscription is None:
        raise SubscriptionNotFoundError()
    return subscription


def get_subscription_or_404(organization: Organization) -> Subscription:
    subscription = get_subscription(organization)
    if subscription is None:
        raise SubscriptionNotFoundError("Subscription not found")
    return subscription


def create_subscription(
    organization: Organization,
    plan_id: UUID | str,
    billing_cycle: str,
    created_by: User | None = None,
    now: datetime | None = None,
) -> Subscription:
    """
    Start a subscription to a plan.

    The subscription starts ``pending``; the organization's plan pointer,
    billing cycle and next billing date are updated in the same transaction.

    Args:
        organization: Purchasing organization.
        plan_id: Active plan to subscribe to.
        billing_cycle: 'monthly' or 'yearly'.
        created_by: User making the purchase.
        now: Period start override, mainly for tests.

    Returns:
        The new Subscription.

    Raises:
        ValidationError: If the billing cycle is unknown
        PlanNotFoundError: If the plan does not exist or is inactive
        ActiveSubscriptionExistsError: If the organization already has an active subscription
    """
    validate_billing_cycle(billing_cycle)
    plan = get_plan(plan_id)
    period_start = now or timezone.now()
    period_end = compute_period_end(period_start, billing_cycle)

    with transaction.atomic():
        _lock_organization(organization)

        if Subscription.objects.filter(
            organization=organization, status=Subscription.Status.ACTIVE
        ).exists():
            raise ActiveSubscriptionExistsError()

        subscription = Subscription.objects.create(
            organization=organization,
            plan=plan,
            external_subscription_id=f"TEMP_{uuid4()}",
            status=Subscription.Status.PENDING,
            billing_cycle=billing_cycle,
            current_period_start=period_start,
            current_period_end=period_end,
            created_by=created_by,
        )
        _sync_organization(organization, subscription)
        record_billing_event(
            BillingEvent.EventType.SUBSCRIPTION_CREATED,
            subscription,
            {"plan_id": str(plan.id), "billing_cycle": billing_cycle},
            actor=created_by,
        )

    logger.info(
        "subscription_created",
        organization_id=str(organization.id),
        subscription_id=str(subscription.id),
        plan=plan.slug,
        billing_cycle=billing_cycle,
    )
    return subscription


def activate_subscription(
    organization: Organization,
    subscription_id: UUID | str | None = None,
    external_subscription_id: str | None = None,
    actor: User | None = None,
) -> Subscription:
    """
    Move a pending subscription to ``active``.

    Without ``subscription_id`` the latest pending subscription is used.
    ``external_subscription_id`` replaces the temporary processor id.

    Raises:
        SubscriptionNotFoundError: If there is no matching subscription
        SubscriptionStateError: If the subscription is not pending
        ActiveSubscriptionExistsError: If another subscription is already active
    """
    with transaction.atomic():
        _lock_organization(organization)

        queryset = Subscription.objects.select_for_update().filter(organization=organization)
        if subscription_id is not None:
            subscription = queryset.filter(id=subscription_id).first()
        else:
            subscription = (
                queryset.filter(status=Subscription.Status.PENDING).order_by("-created_at").first()
            )
        if subscription is None:
            raise SubscriptionNotFoundError("Subscription not found")

        if subscription.status != Subscription.Status.PENDING:
            raise SubscriptionStateError("Only pending subscriptions can be activated")
        if (
            Subscription.objects.filter(
                organization=organization, status=Subscription.Status.ACTIVE
            )
            .exclude(pk=subscription.pk)
            .exists()
        ):
            raise ActiveSubscriptionExistsError()

        subscription.status = Subscription.Status.ACTIVE
        update_fields = ["status", "updated_at"]
        if external_subscription_id:
            subscription.external_subscription_id = external_subscription_id
            update_fields.append("external_subscription_id")
        try:
            with transaction.atomic():
                subscription.save(update_fields=update_fields)
        except IntegrityError:
            raise ActiveSubscriptionExistsError() from None

        _sync_organization(organization, subscription)
        record_billing_event(
            BillingEvent.EventType.SUBSCRIPTION_UPDATED,
            subscription,
            {"status": subscription.status},
            actor=actor,
        )

    logger.info(
        "subscription_activated",
        organization_id=str(organization.id),
        subscription_id=str(subscription.id),
    )
    return subscription


def change_plan(
    organization: Organization,
    new_plan_id: UUID | str,
    billing_cycle: str,
    actor: User | None = None,
) -> Subscription:
    """
    Switch the active subscription to another plan and/or billing cycle.

    Period boundaries are kept as they are; no proration is applied.

    Raises:
        ValidationError: If the billing cycle is unknown
        PlanNotFoundError: If the target plan does not exist or is inactive
        SubscriptionNotFoundError: If there is no active subscription
    """
    validate_billing_cycle(billing_cycle)
    plan = get_plan(new_plan_id)

    with transaction.atomic():
        _lock_organization(organization)
        subscription = (
            Subscription.objects.select_for_update()
            .filter(organization=organization, status=Subscription.Status.ACTIVE)
            .order_by("-created_at")
            .first()
        )
        if subscription is None:
            raise SubscriptionNotFoundError()

        previous_plan_id = subscription.plan_id
        previous_cycle = subscription.billing_cycle
        subscription.plan = plan
        subscription.billing_cycle = billing_cycle
        subscription.save(update_fields=["plan", "billing_cycle", "updated_at"])

        _sync_organization(organization, subscription)
        record_billing_event(
            BillingEvent.EventType.PLAN_CHANGED,
            subscription,
            {
                "previous_plan_id": str(previous_plan_id),
                "plan_id": str(plan.id),
                "previous_billing_cycle": previous_cycle,
                "billing_cycle": billing_cycle,
            },
            actor=actor,
        )

    logger.info(
        "subscription_plan_changed",
        organization_id=str(organization.id),
        subscription_id=str(subscription.id),
        plan=plan.slug,
        billing_cycle=billing_cycle,
    )
    return subscription


def cancel_subscription(
    organization: Organization,
    at_period_end: bool = True,
    actor: User | None = None,
) -> Subscription:
    """
    Cancel the active subscription.

    By default only flags ``cancel_at_period_end``; the subscription stays
    active until the period is over. With ``at_period_end=False`` it is
    cancelled right away and ``cancelled_at`` is stamped.

    Raises:
        SubscriptionNotFoundError: If there is no active subscription
    """
    with transaction.atomic():
        _lock_organization(organization)
        subscription = (
            Subscription.objects.select_for_update()
            .filter(organization=organization, status=Subscription.Status.ACTIVE)
            .order_by("-created_at")
            .first()
        )
        if subscription is None:
            raise SubscriptionNotFoundError()

        if at_period_end:
            subscription.cancel_at_period_end = True
            subscription.save(update_fields=["cancel_at_period_end", "updated_at"])
        else:
            subscription.status = Subscription.Status.CANCELLED
            subscription.cancelled_at = timezone.now()
            subscription.save(update_fields=["status", "cancelled_at", "updated_at"])
            _sync_organization(
                organization, subscription, Organization.SubscriptionStatus.CANCELLED
            )

        record_billing_event(
            BillingEvent.EventType.SUBSCRIPTION_CANCELLED,
            subscription,
            {"at_period_end": at_period_end},
            actor=actor,
        )

    logger.info(
        "subscription_cancelled",
        organization_id=str(organization.id),
        subscription_id=str(subscription.id),
        at_period_end=at_period_end,
    )
    return subscription


def reactivate_subscription(
    organization: Organization,
    actor: User | None = None,
) -> Subscription:
    """
    Undo a cancellation while the billing period is still running.

    Applies to the latest subscription when it is either active with
    ``cancel_at_period_end`` set or cancelled. Once the period has fully
    elapsed a new subscription must be created instead.

    Raises:
        SubscriptionNotFoundError: If the organization never subscribed
        SubscriptionStateError: If there is nothing to undo or the period is over
        ActiveSubscriptionExistsError: If a different subscription is active
    """
    with transaction.atomic():
        _lock_organization(organization)
        subscription = (
            Subscription.objects.select_for_update()
            .select_related("plan")
            .filter(organization=organization)
            .order_by("-created_at")
            .first()
        )
        if subscription is None:
            raise SubscriptionNotFoundError("Subscription not found")

        if subscription.status not in (Subscription.Status.ACTIVE, Subscription.Status.CANCELLED):
            raise SubscriptionStateError(
                f"Cannot reactivate a subscription with status '{subscription.status}'"
            )
        if subscription.is_active and not subscription.cancel_at_period_end:
            raise SubscriptionStateError("Subscription is not scheduled for cancellation")
        if subscription.period_elapsed:
            raise SubscriptionStateError(
                "Billing period has ended; create a new subscription instead"
            )
        if (
            Subscription.objects.filter(
                organization=organization, status=Subscription.Status.ACTIVE
            )
            .exclude(pk=subscription.pk)
            .exists()
        ):
            raise ActiveSubscriptionExistsError()

        subscription.status = Subscription.Status.ACTIVE
        subscription.cancel_at_period_end = False
        subscription.cancelled_at = None
        subscription.save(
            update_fields=["status", "cancel_at_period_end", "cancelled_at", "updated_at"]
        )

        _sync_organization(organization, subscription)
        record_billing_event(
            BillingEvent.EventType.SUBSCRIPTION_UPDATED,
            subscription,
            {"reactivated": True},
            actor=actor,
        )

    logger.info(
        "subscription_reactivated",
        organization_id=str(organization.id),
        subscription_id=str(subscription.id),
    )
    return subscription


def expire_subscriptions(now: datetime | None = None, dry_run: bool = False) -> int:
    """
    Finish cancellations whose billing period is over.

    Active subscriptions flagged ``cancel_at_period_end`` with an elapsed
    period become ``cancelled``. Unflagged subscriptions are left alone.

    Returns:
        Number of subscriptions cancelled (or that would be, with dry_run)
    """
    now = now or timezone.now()
    qualifies = {
        "status": Subscription.Status.ACTIVE,
        "cancel_at_period_end": True,
        "current_period_end__lte": now,
    }
    due = Subscription.objects.filter(**qualifies)
    if dry_run:
        return due.count()

    cancelled = 0
    for subscription_id, organization_id in list(due.values_list("id", "organization_id")):
        with transaction.atomic():
            organization = Organization.objects.get(pk=organization_id)
            _lock_organization(organization)
            subscription = (
                Subscription.objects.select_for_update()
                .filter(pk=subscription_id, **qualifies)
                .first()
            )
            if subscription is None:
                # Reactivated or cancelled since the sweep started
                continue
            subscription.status = Subscription.Status.CANCELLED
            subscription.cancelled_at = now
            subscription.save(update_fields=["status", "cancelled_at", "updated_at"])
            _sync_organization(
                organization, subscription, Organization.SubscriptionStatus.CANCELLED
            )
            record_billing_event(
                BillingEvent.EventType.SUBSCRIPTION_CANCELLED,
                subscription,
                {"at_period_end": True, "period_ended": True},
            )
        cancelled += 1

    if cancelled:
        logger.info("subscriptions_expired", count=cancelled)
    return cancelled


def get_subscription_usage(
    organization: Organization, now: datetime | None = None
) -> SubscriptionUsage:
    """Current usage counters with the limits of the organization's current plan."""
    period_start, period_end = current_period(now)
    usage = get_current_usage(organization, now)
    plan = organization.plan
    return SubscriptionUsage(
        usage=usage.counters if usage else dict.fromkeys(OrganizationUsage.COUNTER_FIELDS, 0),
        limits=plan.limits if plan else None,
        plan=plan,
        period_start=usage.period_start if usage else period_start,
        period_end=usage.period_end if usage else period_end,
    )
