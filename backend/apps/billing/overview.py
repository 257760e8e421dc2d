"""
Billing overview aggregator - read-only dashboard composition.

Pulls from the subscription manager, plan catalog, usage meter, invoicing
engine and payment ledger. Missing pieces are left empty instead of
raising.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from apps.billing.invoices import invoices_for_organization, list_unpaid_invoices
from apps.billing.models import Invoice, OrganizationUsage, Payment, Plan, Subscription
from apps.billing.payments import payments_for_organization, recent_payments
from apps.billing.services import get_active_subscription
from apps.billing.usage import get_current_usage
from apps.core.utils import DEFAULT_PAGE_SIZE, paginate
from apps.organizations.models import Organization


@dataclass
class BillingOverview:
    """Everything the billing dashboard shows for one organization."""

    current_subscription: Subscription | None = None
    current_plan: Plan | None = None
    next_billing_date: datetime | None = None
    next_billing_amount: Decimal | None = None
    current_usage: OrganizationUsage | None = None
    plan_limits: dict[str, int] | None = None
    unpaid_invoices: list[Invoice] = field(default_factory=list)
    recent_payments: list[Payment] = field(default_factory=list)


@dataclass
class BillingHistoryItem:
    """One invoice or payment in the merged billing feed."""

    kind: Literal["invoice", "payment"]
    id: UUID
    amount: Decimal
    currency: str
    status: str
    description: str
    date: datetime


def get_billing_overview(organization: Organization) -> BillingOverview:
    """
    Compose the billing dashboard.

    The current plan comes from the organization's plan pointer, and the
    next billing amount is that plan's price for the organization's
    billing cycle.
    """
    overview = BillingOverview()

    subscription = get_active_subscription(organization)
    if subscription is not None:
        overview.current_subscription = subscription
        overview.next_billing_date = subscription.current_period_end

    plan = organization.plan
    if plan is not None:
        overview.current_plan = plan
        overview.plan_limits = plan.limits
        if organization.billing_cycle:
            overview.next_billing_amount = plan.price_for(organization.billing_cycle)

    overview.current_usage = get_current_usage(organization)
    overview.unpaid_invoices = list_unpaid_invoices(organization)
    overview.recent_payments = recent_payments(organization)
    return overview


def _invoice_item(invoice: Invoice) -> BillingHistoryItem:
    return BillingHistoryItem(
        kind="invoice",
        id=invoice.id,
        amount=invoice.total_amount,
        currency=invoice.currency,
        status=invoice.status,
        description=f"Invoice {invoice.invoice_number}",
        date=invoice.created_at,
    )


def _payment_item(payment: Payment) -> BillingHistoryItem:
    return BillingHistoryItem(
        kind="payment",
        id=payment.id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        description="Payment",
        date=payment.created_at,
    )


def get_billing_history(
    organization: Organization, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[BillingHistoryItem], int]:
    """
    Invoices and payments merged into one feed, newest first.

    Both sets are loaded in full and the page is sliced in memory.

    Returns:
        Tuple of (items on the page, total number of items)
    """
    items = [_invoice_item(invoice) for invoice in invoices_for_organization(organization)]
    items.extend(_payment_item(payment) for payment in payments_for_organization(organization))
    items.sort(key=lambda item: item.date, reverse=True)
    return paginate(items, page, page_size)
