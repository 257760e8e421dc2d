"""
Billing API schemas - request/response types for plan, subscription,
invoice, payment and overview endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from ninja import Schema
from pydantic import Field

from apps.core.schemas import BaseResponse, PaginationMeta

BillingCycleLiteral = Literal["monthly", "yearly"]


# Plans


class PlanOut(Schema):
    """Subscription tier."""

    id: UUID
    name: str
    slug: str
    description: str | None = None
    price_monthly: Decimal
    price_yearly: Decimal
    max_users: int
    max_projects: int
    max_environments: int
    max_schemas: int
    max_test_records_per_schema: int
    features: list[str]
    is_active: bool


class PlanResponse(BaseResponse):
    data: PlanOut


class PlanListResponse(BaseResponse):
    list: list[PlanOut]


class PlanPageResponse(BaseResponse):
    meta: PaginationMeta
    list: list[PlanOut]


# Subscriptions


class SubscriptionOut(Schema):
    """Subscription record with its plan."""

    id: UUID
    organization_id: UUID
    plan: PlanOut
    external_subscription_id: str
    status: str  # 'pending', 'active', 'cancelled', 'suspended', 'expired'
    billing_cycle: str
    current_period_start: datetime
    current_period_end: datetime
    trial_end: datetime | None = None
    cancel_at_period_end: bool
    cancelled_at: datetime | None = None
    created_at: datetime


class SubscriptionResponse(BaseResponse):
    data: SubscriptionOut


class SubscriptionMessageResponse(BaseResponse):
    message: str
    data: SubscriptionOut


class CreateSubscriptionRequest(Schema):
    plan_id: UUID
    billing_cycle: BillingCycleLiteral = "monthly"


class ActivateSubscriptionRequest(Schema):
    subscription_id: UUID | None = Field(
        default=None, description="Defaults to the latest pending subscription"
    )
    external_subscription_id: str | None = Field(
        default=None, description="Processor subscription id replacing the temporary one"
    )


class ChangePlanRequest(Schema):
    plan_id: UUID
    billing_cycle: BillingCycleLiteral = "monthly"


class CancelSubscriptionRequest(Schema):
    at_period_end: bool = Field(
        default=True,
        description="Keep the subscription until the period ends instead of cancelling now",
    )


# Usage


class UsageOut(Schema):
    """Usage counters for one calendar-month period."""

    period_start: datetime
    period_end: datetime
    users_count: int
    projects_count: int
    environments_count: int
    schemas_count: int
    test_records_count: int
    api_requests_count: int
    recorded_at: datetime


class SubscriptionUsageOut(Schema):
    usage: dict[str, int]
    limits: dict[str, int] | None = None
    plan: PlanOut | None = None
    period_start: datetime
    period_end: datetime


class SubscriptionUsageResponse(BaseResponse):
    data: SubscriptionUsageOut


class UsageHistoryResponse(BaseResponse):
    meta: PaginationMeta
    list: list[UsageOut]


# Invoices


class InvoiceLineItemOut(Schema):
    id: UUID
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class InvoiceOut(Schema):
    """Invoice with line items."""

    id: UUID
    organization_id: UUID
    subscription_id: UUID | None = None
    invoice_number: str
    amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    status: str  # 'draft', 'sent', 'paid', 'cancelled', 'refunded'
    billing_period_start: datetime | None = None
    billing_period_end: datetime | None = None
    due_date: datetime | None = None
    paid_at: datetime | None = None
    invoice_url: str | None = None
    created_at: datetime
    line_items: list[InvoiceLineItemOut]


class InvoiceResponse(BaseResponse):
    data: InvoiceOut


class InvoiceListResponse(BaseResponse):
    meta: PaginationMeta
    list: list[InvoiceOut]


class LineItemIn(Schema):
    description: str = Field(min_length=1, max_length=500)
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class CreateInvoiceRequest(Schema):
    line_items: list[LineItemIn] = Field(min_length=1)
    tax_amount: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    subscription_id: UUID | None = None
    status: Literal["draft", "sent"] = "draft"
    billing_period_start: datetime | None = None
    billing_period_end: datetime | None = None
    due_date: datetime | None = None
    invoice_url: str | None = None


class UpdateInvoiceStatusRequest(Schema):
    status: Literal["draft", "sent", "paid", "cancelled", "refunded"]


# Payments


class PaymentOut(Schema):
    id: UUID
    invoice_id: UUID | None = None
    subscription_id: UUID | None = None
    external_payment_id: str | None = None
    external_payer_id: str | None = None
    amount: Decimal
    currency: str
    payment_method: str
    status: str  # 'pending', 'completed', 'failed', 'cancelled', 'refunded'
    failure_reason: str | None = None
    processed_at: datetime | None = None
    created_at: datetime


class PaymentResponse(BaseResponse):
    message: str
    data: PaymentOut


class PayInvoiceRequest(Schema):
    external_payer_id: str | None = None


# Payment methods


class PaymentMethodOut(Schema):
    id: UUID
    payment_type: str
    external_payer_id: str | None = None
    external_email: str | None = None
    is_default: bool
    is_active: bool
    created_at: datetime


class PaymentMethodResponse(BaseResponse):
    data: PaymentMethodOut


class PaymentMethodListResponse(BaseResponse):
    list: list[PaymentMethodOut]


class CreatePaymentMethodRequest(Schema):
    email: str | None = Field(default=None, max_length=254)
    payer_id: str | None = Field(default=None, max_length=255)
    is_default: bool = False


class UpdatePaymentMethodRequest(Schema):
    """Fields left out are not changed."""

    email: str | None = Field(default=None, max_length=254)
    payer_id: str | None = Field(default=None, max_length=255)
    is_default: bool | None = None


# Overview and history


class BillingOverviewOut(Schema):
    current_subscription: SubscriptionOut | None = None
    current_plan: PlanOut | None = None
    next_billing_date: datetime | None = None
    next_billing_amount: Decimal | None = None
    current_usage: UsageOut | None = None
    plan_limits: dict[str, int] | None = None
    unpaid_invoices: list[InvoiceOut]
    recent_payments: list[PaymentOut]


class BillingOverviewResponse(BaseResponse):
    data: BillingOverviewOut


class BillingHistoryItemOut(Schema):
    id: UUID
    type: Literal["invoice", "payment"]
    amount: Decimal
    currency: str
    status: str
    description: str
    date: datetime


class BillingHistoryResponse(BaseResponse):
    meta: PaginationMeta
    list: list[BillingHistoryItemOut]
