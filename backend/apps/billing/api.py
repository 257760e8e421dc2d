"""
Billing API endpoints.

Plans are public. Everything else is scoped to an organization the caller
is a joined member of; writes require the admin role.
"""

from uuid import UUID

from django.http import HttpResponseRedirect
from ninja import Router

from apps.billing import invoices as invoicing
from apps.billing import payments as ledger
from apps.billing import plans as catalog
from apps.billing import services as subscriptions
from apps.billing.models import Subscription
from apps.billing.overview import get_billing_history, get_billing_overview
from apps.billing.schemas import (
    ActivateSubscriptionRequest,
    BillingHistoryItemOut,
    BillingHistoryResponse,
    BillingOverviewOut,
    BillingOverviewResponse,
    CancelSubscriptionRequest,
    ChangePlanRequest,
    CreateInvoiceRequest,
    CreatePaymentMethodRequest,
    CreateSubscriptionRequest,
    InvoiceListResponse,
    InvoiceOut,
    InvoiceResponse,
    PayInvoiceRequest,
    PaymentMethodListResponse,
    PaymentMethodOut,
    PaymentMethodResponse,
    PaymentOut,
    PaymentResponse,
    PlanListResponse,
    PlanOut,
    PlanPageResponse,
    PlanResponse,
    SubscriptionMessageResponse,
    SubscriptionOut,
    SubscriptionResponse,
    SubscriptionUsageOut,
    SubscriptionUsageResponse,
    UpdateInvoiceStatusRequest,
    UpdatePaymentMethodRequest,
    UsageHistoryResponse,
    UsageOut,
)
from apps.billing.usage import get_usage_history
from apps.core.exceptions import ValidationError
from apps.core.logging import get_logger
from apps.core.schemas import ErrorResponse, MessageResponse, PaginationMeta
from apps.core.security import BearerAuth, get_auth_context
from apps.core.types import AuthenticatedHttpRequest
from apps.core.utils import DEFAULT_PAGE_SIZE

logger = get_logger(__name__)

plans_router = Router(tags=["plans"])
router = Router(tags=["billing"])
bearer_auth = BearerAuth()

ERRORS = {
    400: ErrorResponse,
    401: ErrorResponse,
    403: ErrorResponse,
    404: ErrorResponse,
}


# Plans


@plans_router.get(
    "",
    response=PlanListResponse,
    operation_id="listPlans",
    summary="List active plans",
)
def list_plans(request) -> PlanListResponse:
    """Active plans, cheapest first."""
    return PlanListResponse(list=[PlanOut.from_orm(p) for p in catalog.list_active_plans()])


@plans_router.get(
    "/page",
    response={200: PlanPageResponse, 400: ErrorResponse},
    operation_id="listPlansPaginated",
    summary="List active plans, paginated",
)
def list_plans_page(request, page: int = 0) -> PlanPageResponse:
    plans, total = catalog.list_plans_page(page)
    return PlanPageResponse(
        list=[PlanOut.from_orm(p) for p in plans],
        meta=PaginationMeta.build(page, DEFAULT_PAGE_SIZE, total),
    )


@plans_router.get(
    "/compare",
    response=PlanListResponse,
    operation_id="comparePlans",
    summary="Full plan catalog for comparison",
)
def compare_plans(request) -> PlanListResponse:
    return PlanListResponse(list=[PlanOut.from_orm(p) for p in catalog.compare_plans()])


@plans_router.get(
    "/slug/{slug}",
    response={200: PlanResponse, 404: ErrorResponse},
    operation_id="getPlanBySlug",
    summary="Get plan by slug",
)
def get_plan_by_slug(request, slug: str) -> PlanResponse:
    return PlanResponse(data=PlanOut.from_orm(catalog.get_plan_by_slug(slug)))


@plans_router.get(
    "/{plan_id}",
    response={200: PlanResponse, 404: ErrorResponse},
    operation_id="getPlan",
    summary="Get plan by id",
)
def get_plan(request, plan_id: UUID) -> PlanResponse:
    return PlanResponse(data=PlanOut.from_orm(catalog.get_plan(plan_id)))


# Subscription


def _subscription_out(subscription: Subscription) -> SubscriptionOut:
    return SubscriptionOut.from_orm(subscription)


@router.get(
    "/organizations/{org_id}/subscription",
    response={200: SubscriptionResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getSubscription",
    summary="Get the organization's current subscription",
)
def get_subscription(request: AuthenticatedHttpRequest, org_id: UUID) -> SubscriptionResponse:
    """Latest subscription, whatever its status."""
    _, _, organization = get_auth_context(request).for_organization(org_id)
    subscription = subscriptions.get_subscription_or_404(organization)
    return SubscriptionResponse(data=_subscription_out(subscription))


@router.post(
    "/organizations/{org_id}/subscription/create",
    response={200: SubscriptionResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="createSubscription",
    summary="Subscribe the organization to a plan",
)
def create_subscription(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: CreateSubscriptionRequest
) -> SubscriptionResponse:
    """Admin only. The subscription starts pending."""
    user, _, organization = get_auth_context(request).require_admin(org_id)
    subscription = subscriptions.create_subscription(
        organization,
        plan_id=payload.plan_id,
        billing_cycle=payload.billing_cycle,
        created_by=user,
    )
    return SubscriptionResponse(data=_subscription_out(subscription))


@router.post(
    "/organizations/{org_id}/subscription/activate",
    response={200: SubscriptionResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="activateSubscription",
    summary="Activate a pending subscription",
)
def activate_subscription(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: ActivateSubscriptionRequest
) -> SubscriptionResponse:
    """Admin only. Called once the processor confirms the subscription."""
    user, _, organization = get_auth_context(request).require_admin(org_id)
    subscription = subscriptions.activate_subscription(
        organization,
        subscription_id=payload.subscription_id,
        external_subscription_id=payload.external_subscription_id,
        actor=user,
    )
    return SubscriptionResponse(data=_subscription_out(subscription))


@router.put(
    "/organizations/{org_id}/subscription/change-plan",
    response={200: SubscriptionResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="changeSubscriptionPlan",
    summary="Change plan or billing cycle",
)
def change_plan(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: ChangePlanRequest
) -> SubscriptionResponse:
    """Admin only. Period boundaries are unchanged."""
    user, _, organization = get_auth_context(request).require_admin(org_id)
    subscription = subscriptions.change_plan(
        organization,
        new_plan_id=payload.plan_id,
        billing_cycle=payload.billing_cycle,
        actor=user,
    )
    return SubscriptionResponse(data=_subscription_out(subscription))


@router.post(
    "/organizations/{org_id}/subscription/cancel",
    response={200: SubscriptionMessageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="cancelSubscription",
    summary="Cancel the active subscription",
)
def cancel_subscription(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: CancelSubscriptionRequest
) -> SubscriptionMessageResponse:
    """Admin only. Defaults to cancelling at the end of the billing period."""
    user, _, organization = get_auth_context(request).require_admin(org_id)
    subscription = subscriptions.cancel_subscription(
        organization, at_period_end=payload.at_period_end, actor=user
    )
    message = (
        "Subscription will be cancelled at the end of the current billing period"
        if payload.at_period_end
        else "Subscription cancelled"
    )
    return SubscriptionMessageResponse(message=message, data=_subscription_out(subscription))


@router.post(
    "/organizations/{org_id}/subscription/reactivate",
    response={200: SubscriptionMessageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="reactivateSubscription",
    summary="Undo a pending cancellation",
)
def reactivate_subscription(
    request: AuthenticatedHttpRequest, org_id: UUID
) -> SubscriptionMessageResponse:
    """Admin only."""
    user, _, organization = get_auth_context(request).require_admin(org_id)
    subscription = subscriptions.reactivate_subscription(organization, actor=user)
    return SubscriptionMessageResponse(
        message="Subscription reactivated", data=_subscription_out(subscription)
    )


@router.get(
    "/organizations/{org_id}/subscription/usage",
    response={200: SubscriptionUsageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getSubscriptionUsage",
    summary="Current usage against plan limits",
)
def get_subscription_usage(
    request: AuthenticatedHttpRequest, org_id: UUID
) -> SubscriptionUsageResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    result = subscriptions.get_subscription_usage(organization)
    return SubscriptionUsageResponse(
        data=SubscriptionUsageOut(
            usage=result.usage,
            limits=result.limits,
            plan=PlanOut.from_orm(result.plan) if result.plan else None,
            period_start=result.period_start,
            period_end=result.period_end,
        )
    )


@router.get(
    "/organizations/{org_id}/usage/history",
    response={200: UsageHistoryResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getUsageHistory",
    summary="Usage of past periods",
)
def usage_history(
    request: AuthenticatedHttpRequest, org_id: UUID, page: int = 0
) -> UsageHistoryResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    rows, total = get_usage_history(organization, page)
    return UsageHistoryResponse(
        list=[UsageOut.from_orm(row) for row in rows],
        meta=PaginationMeta.build(page, DEFAULT_PAGE_SIZE, total),
    )


# Overview and history


@router.get(
    "/organizations/{org_id}/billing/overview",
    response={200: BillingOverviewResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getBillingOverview",
    summary="Billing dashboard",
)
def billing_overview(request: AuthenticatedHttpRequest, org_id: UUID) -> BillingOverviewResponse:
    """Subscription, plan, usage, unpaid invoices and recent payments."""
    _, _, organization = get_auth_context(request).for_organization(org_id)
    overview = get_billing_overview(organization)
    return BillingOverviewResponse(data=BillingOverviewOut.from_orm(overview))


@router.get(
    "/organizations/{org_id}/billing/history",
    response={200: BillingHistoryResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getBillingHistory",
    summary="Invoices and payments, newest first",
)
def billing_history(
    request: AuthenticatedHttpRequest, org_id: UUID, page: int = 0
) -> BillingHistoryResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    items, total = get_billing_history(organization, page)
    return BillingHistoryResponse(
        list=[
            BillingHistoryItemOut(
                id=item.id,
                type=item.kind,
                amount=item.amount,
                currency=item.currency,
                status=item.status,
                description=item.description,
                date=item.date,
            )
            for item in items
        ],
        meta=PaginationMeta.build(page, DEFAULT_PAGE_SIZE, total),
    )


# Invoices


@router.get(
    "/organizations/{org_id}/invoices",
    response={200: InvoiceListResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="listInvoices",
    summary="List invoices",
)
def list_invoices(
    request: AuthenticatedHttpRequest, org_id: UUID, page: int = 0
) -> InvoiceListResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    invoices, total = invoicing.list_invoices(organization, page)
    return InvoiceListResponse(
        list=[InvoiceOut.from_orm(invoice) for invoice in invoices],
        meta=PaginationMeta.build(page, DEFAULT_PAGE_SIZE, total),
    )


@router.post(
    "/organizations/{org_id}/invoices",
    response={200: InvoiceResponse, **ERRORS, 409: ErrorResponse},
    auth=bearer_auth,
    operation_id="createInvoice",
    summary="Create an invoice",
)
def create_invoice(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: CreateInvoiceRequest
) -> InvoiceResponse:
    """Admin only. Line items and invoice are stored together or not at all."""
    user, _, organization = get_auth_context(request).require_admin(org_id)

    subscription = None
    if payload.subscription_id is not None:
        subscription = Subscription.objects.filter(
            id=payload.subscription_id, organization=organization
        ).first()
        if subscription is None:
            raise ValidationError("Subscription belongs to another organization")

    invoice = invoicing.create_invoice(
        organization,
        line_items=[item.model_dump() for item in payload.line_items],
        tax_amount=payload.tax_amount,
        subscription=subscription,
        currency=payload.currency,
        status=payload.status,
        billing_period_start=payload.billing_period_start,
        billing_period_end=payload.billing_period_end,
        due_date=payload.due_date,
        invoice_url=payload.invoice_url,
        actor=user,
    )
    return InvoiceResponse(data=InvoiceOut.from_orm(invoicing.get_invoice(invoice.id)))


@router.get(
    "/invoices/{invoice_id}",
    response={200: InvoiceResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getInvoice",
    summary="Get invoice with line items",
)
def get_invoice(request: AuthenticatedHttpRequest, invoice_id: UUID) -> InvoiceResponse:
    invoice = invoicing.get_invoice(invoice_id)
    get_auth_context(request).for_organization(invoice.organization_id)
    return InvoiceResponse(data=InvoiceOut.from_orm(invoice))


@router.get(
    "/invoices/{invoice_id}/download",
    response={302: None, **ERRORS},
    auth=bearer_auth,
    operation_id="downloadInvoice",
    summary="Redirect to the hosted invoice document",
)
def download_invoice(request: AuthenticatedHttpRequest, invoice_id: UUID) -> HttpResponseRedirect:
    invoice = invoicing.get_invoice(invoice_id)
    get_auth_context(request).for_organization(invoice.organization_id)
    return HttpResponseRedirect(invoicing.get_download_url(invoice))


@router.put(
    "/invoices/{invoice_id}/status",
    response={200: InvoiceResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="updateInvoiceStatus",
    summary="Move an invoice to a new status",
)
def update_invoice_status(
    request: AuthenticatedHttpRequest, invoice_id: UUID, payload: UpdateInvoiceStatusRequest
) -> InvoiceResponse:
    """Admin only."""
    invoice = invoicing.get_invoice(invoice_id)
    get_auth_context(request).require_admin(invoice.organization_id)
    invoicing.update_invoice_status(invoice, payload.status)
    return InvoiceResponse(data=InvoiceOut.from_orm(invoice))


@router.post(
    "/invoices/{invoice_id}/pay",
    response={200: PaymentResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="payInvoice",
    summary="Pay an invoice in full",
)
def pay_invoice(
    request: AuthenticatedHttpRequest, invoice_id: UUID, payload: PayInvoiceRequest
) -> PaymentResponse:
    """Admin only. Rejected when the invoice is already paid."""
    invoice = invoicing.get_invoice(invoice_id)
    user, _, _ = get_auth_context(request).require_admin(invoice.organization_id)
    payment = invoicing.pay_invoice(
        invoice, payer=user, external_payer_id=payload.external_payer_id
    )
    return PaymentResponse(message="Invoice paid", data=PaymentOut.from_orm(payment))


# Payment methods


@router.get(
    "/organizations/{org_id}/payment-methods",
    response={200: PaymentMethodListResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="listPaymentMethods",
    summary="List active payment methods",
)
def list_payment_methods(
    request: AuthenticatedHttpRequest, org_id: UUID
) -> PaymentMethodListResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    return PaymentMethodListResponse(
        list=[PaymentMethodOut.from_orm(pm) for pm in ledger.list_payment_methods(organization)]
    )


@router.post(
    "/organizations/{org_id}/payment-methods",
    response={200: PaymentMethodResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="createPaymentMethod",
    summary="Add a payment method",
)
def create_payment_method(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: CreatePaymentMethodRequest
) -> PaymentMethodResponse:
    """Admin only."""
    user, _, organization = get_auth_context(request).require_admin(org_id)
    payment_method = ledger.create_payment_method(
        organization,
        created_by=user,
        external_email=payload.email,
        external_payer_id=payload.payer_id,
        is_default=payload.is_default,
    )
    return PaymentMethodResponse(data=PaymentMethodOut.from_orm(payment_method))


@router.put(
    "/organizations/{org_id}/payment-methods/{payment_method_id}",
    response={200: PaymentMethodResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="updatePaymentMethod",
    summary="Update a payment method",
)
def update_payment_method(
    request: AuthenticatedHttpRequest,
    org_id: UUID,
    payment_method_id: UUID,
    payload: UpdatePaymentMethodRequest,
) -> PaymentMethodResponse:
    """Admin only. Omitted fields are left unchanged."""
    _, _, organization = get_auth_context(request).require_admin(org_id)
    payment_method = ledger.update_payment_method(
        organization,
        payment_method_id,
        external_email=payload.email,
        external_payer_id=payload.payer_id,
        is_default=payload.is_default,
    )
    return PaymentMethodResponse(data=PaymentMethodOut.from_orm(payment_method))


@router.put(
    "/organizations/{org_id}/payment-methods/{payment_method_id}/set-default",
    response={200: PaymentMethodResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="setDefaultPaymentMethod",
    summary="Make a payment method the default",
)
def set_default_payment_method(
    request: AuthenticatedHttpRequest, org_id: UUID, payment_method_id: UUID
) -> PaymentMethodResponse:
    """Admin only."""
    _, _, organization = get_auth_context(request).require_admin(org_id)
    payment_method = ledger.set_default_payment_method(organization, payment_method_id)
    return PaymentMethodResponse(data=PaymentMethodOut.from_orm(payment_method))


@router.delete(
    "/organizations/{org_id}/payment-methods/{payment_method_id}",
    response={200: MessageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="deletePaymentMethod",
    summary="Remove a payment method",
)
def delete_payment_method(
    request: AuthenticatedHttpRequest, org_id: UUID, payment_method_id: UUID
) -> MessageResponse:
    """Admin only. The method is deactivated, not deleted."""
    _, _, organization = get_auth_context(request).require_admin(org_id)
    ledger.deactivate_payment_method(organization, payment_method_id)
    return MessageResponse(message="Payment method removed")
