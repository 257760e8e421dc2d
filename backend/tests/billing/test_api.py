"""
Tests for billing API endpoints.

Endpoint functions are called directly with an authenticated request; a few
tests go through the full HTTP stack to check the response envelope.
"""

import uuid
from decimal import Decimal

import pytest
from django.test import Client, RequestFactory

from apps.billing.api import (
    billing_history,
    billing_overview,
    cancel_subscription,
    change_plan,
    create_invoice,
    create_payment_method,
    create_subscription,
    delete_payment_method,
    download_invoice,
    get_invoice,
    get_plan,
    get_subscription,
    get_subscription_usage,
    list_invoices,
    list_payment_methods,
    list_plans,
    list_plans_page,
    pay_invoice,
    reactivate_subscription,
    set_default_payment_method,
    update_invoice_status,
    usage_history,
)
from apps.billing.exceptions import (
    ActiveSubscriptionExistsError,
    InvoiceAlreadyPaidError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
)
from apps.billing.models import Invoice, PaymentMethod, Subscription
from apps.billing.schemas import (
    CancelSubscriptionRequest,
    ChangePlanRequest,
    CreateInvoiceRequest,
    CreatePaymentMethodRequest,
    CreateSubscriptionRequest,
    LineItemIn,
    PayInvoiceRequest,
    UpdateInvoiceStatusRequest,
)
from apps.billing.usage import increment_usage
from apps.core.auth import AuthContext
from apps.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    NotFoundError,
    ValidationError,
)
from tests.accounts.factories import OrganizationFactory, UserFactory
from tests.conftest import create_authenticated_request, make_request_with_auth, response_json

from .factories import (
    InvoiceFactory,
    PaymentFactory,
    PaymentMethodFactory,
    PlanFactory,
    SubscriptionFactory,
)


@pytest.mark.django_db
class TestPlanEndpoints:
    def test_list_plans(self, request_factory: RequestFactory) -> None:
        plan = PlanFactory()
        PlanFactory(is_active=False)

        result = list_plans(request_factory.get("/api/v1/plans"))

        assert result.error_code == 0
        assert [p.id for p in result.list] == [plan.id]

    def test_list_plans_page_meta(self, request_factory: RequestFactory) -> None:
        for _ in range(3):
            PlanFactory()

        result = list_plans_page(request_factory.get("/api/v1/plans/page"), page=0)

        assert result.meta.page == 0
        assert result.meta.limit == 50
        assert result.meta.total == 3
        assert result.meta.total_pages == 1

    def test_get_unknown_plan(self, request_factory: RequestFactory) -> None:
        with pytest.raises(PlanNotFoundError):
            get_plan(request_factory.get("/api/v1/plans/x"), plan_id=uuid.uuid4())

    def test_list_plans_http(self, api_client: Client) -> None:
        PlanFactory(slug="starter")

        response = api_client.get("/api/v1/plans")

        assert response.status_code == 200
        body = response_json(response)
        assert body["error_code"] == 0
        assert body["error_description"] == "Success"
        assert body["list"][0]["slug"] == "starter"

    def test_plan_by_slug_not_found_http(self, api_client: Client) -> None:
        response = api_client.get("/api/v1/plans/slug/missing")

        assert response.status_code == 404
        assert response_json(response) == {
            "error_code": 404,
            "error_description": "Plan not found",
        }

    def test_negative_page_http(self, api_client: Client) -> None:
        response = api_client.get("/api/v1/plans/page?page=-1")

        assert response.status_code == 400
        assert response_json(response)["error_description"] == "Invalid page parameter"


@pytest.mark.django_db
class TestSubscriptionEndpoints:
    def test_create_subscription(self, request_factory: RequestFactory) -> None:
        plan = PlanFactory()
        request = create_authenticated_request(request_factory, "post", "/", role="admin")
        org = request.organization

        result = create_subscription(
            request,
            org_id=org.id,
            payload=CreateSubscriptionRequest(plan_id=plan.id, billing_cycle="yearly"),
        )

        assert result.data.status == "pending"
        assert result.data.plan.id == plan.id
        assert result.data.billing_cycle == "yearly"

    def test_create_requires_admin(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "post", "/", role="member")

        with pytest.raises(AccessDeniedError, match="Admin access required"):
            create_subscription(
                request,
                org_id=request.organization.id,
                payload=CreateSubscriptionRequest(plan_id=PlanFactory().id),
            )

    def test_create_when_active_exists(self, request_factory: RequestFactory) -> None:
        sub = SubscriptionFactory()
        request = create_authenticated_request(request_factory, "post", "/", org=sub.organization)

        with pytest.raises(ActiveSubscriptionExistsError):
            create_subscription(
                request,
                org_id=sub.organization.id,
                payload=CreateSubscriptionRequest(plan_id=PlanFactory().id),
            )

    def test_non_member_denied(self, request_factory: RequestFactory) -> None:
        sub = SubscriptionFactory()
        request = make_request_with_auth(
            request_factory.get("/"), AuthContext(user=UserFactory())
        )

        with pytest.raises(AccessDeniedError, match="Access denied to this organization"):
            get_subscription(request, org_id=sub.organization.id)

    def test_unauthenticated(self, request_factory: RequestFactory) -> None:
        with pytest.raises(AuthenticationError):
            get_subscription(request_factory.get("/"), org_id=uuid.uuid4())

    def test_unknown_org(self, request_factory: RequestFactory) -> None:
        request = make_request_with_auth(
            request_factory.get("/"), AuthContext(user=UserFactory())
        )

        with pytest.raises(NotFoundError, match="Organization not found"):
            get_subscription(request, org_id=uuid.uuid4())

    def test_member_can_read(self, request_factory: RequestFactory) -> None:
        sub = SubscriptionFactory()
        request = create_authenticated_request(
            request_factory, "get", "/", org=sub.organization, role="member"
        )

        result = get_subscription(request, org_id=sub.organization.id)

        assert result.data.id == sub.id
        assert result.data.status == "active"

    def test_no_subscription(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "get", "/", role="member")

        with pytest.raises(SubscriptionNotFoundError):
            get_subscription(request, org_id=request.organization.id)

    def test_change_plan(self, request_factory: RequestFactory) -> None:
        sub = SubscriptionFactory()
        pro = PlanFactory()
        request = create_authenticated_request(request_factory, "put", "/", org=sub.organization)

        result = change_plan(
            request,
            org_id=sub.organization.id,
            payload=ChangePlanRequest(plan_id=pro.id, billing_cycle="monthly"),
        )

        assert result.data.plan.id == pro.id

    def test_cancel_messages(self, request_factory: RequestFactory) -> None:
        sub = SubscriptionFactory()
        org = sub.organization
        request = create_authenticated_request(request_factory, "post", "/", org=org)

        scheduled = cancel_subscription(
            request, org_id=org.id, payload=CancelSubscriptionRequest()
        )
        assert scheduled.message == (
            "Subscription will be cancelled at the end of the current billing period"
        )
        assert scheduled.data.cancel_at_period_end is True

        reactivated = reactivate_subscription(request, org_id=org.id)
        assert reactivated.data.cancel_at_period_end is False

        immediate = cancel_subscription(
            request, org_id=org.id, payload=CancelSubscriptionRequest(at_period_end=False)
        )
        assert immediate.message == "Subscription cancelled"
        assert immediate.data.status == "cancelled"

    def test_usage_and_history(self, request_factory: RequestFactory) -> None:
        plan = PlanFactory(max_users=5)
        org = OrganizationFactory(plan=plan, billing_cycle="monthly")
        request = create_authenticated_request(request_factory, "get", "/", org=org, role="member")
        increment_usage(org, "users_count", 2)

        usage = get_subscription_usage(request, org_id=org.id)
        assert usage.data.usage["users_count"] == 2
        assert usage.data.limits["max_users"] == 5

        history = usage_history(request, org_id=org.id, page=0)
        assert history.meta.total == 1
        assert history.list[0].users_count == 2

    def test_create_subscription_http(self, api_client: Client, bearer_headers) -> None:
        plan = PlanFactory()
        request = create_authenticated_request(RequestFactory(), "post", "/")
        org = request.organization

        response = api_client.post(
            f"/api/v1/organizations/{org.id}/subscription/create",
            data={"plan_id": str(plan.id), "billing_cycle": "monthly"},
            content_type="application/json",
            headers=bearer_headers(request.auth.user),
        )

        assert response.status_code == 200
        body = response_json(response)
        assert body["error_code"] == 0
        assert body["data"]["status"] == "pending"
        assert Subscription.objects.filter(organization=org).count() == 1

    def test_invalid_billing_cycle_http(self, api_client: Client, bearer_headers) -> None:
        request = create_authenticated_request(RequestFactory(), "post", "/")
        org = request.organization

        response = api_client.post(
            f"/api/v1/organizations/{org.id}/subscription/create",
            data={"plan_id": str(PlanFactory().id), "billing_cycle": "weekly"},
            content_type="application/json",
            headers=bearer_headers(request.auth.user),
        )

        assert response.status_code == 400
        body = response_json(response)
        assert body["error_code"] == 400
        assert "billing_cycle" in body["error_description"]

    def test_missing_token_http(self, api_client: Client) -> None:
        response = api_client.get(f"/api/v1/organizations/{uuid.uuid4()}/subscription")

        assert response.status_code == 401
        assert response_json(response)["error_code"] == 401

    def test_non_member_http(self, api_client: Client, bearer_headers) -> None:
        org = OrganizationFactory()

        response = api_client.get(
            f"/api/v1/organizations/{org.id}/subscription",
            headers=bearer_headers(UserFactory()),
        )

        assert response.status_code == 403
        assert response_json(response) == {
            "error_code": 403,
            "error_description": "Access denied to this organization",
        }


@pytest.mark.django_db
class TestInvoiceEndpoints:
    def test_create_and_get(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "post", "/")
        org = request.organization

        created = create_invoice(
            request,
            org_id=org.id,
            payload=CreateInvoiceRequest(
                line_items=[
                    LineItemIn(description="Plan", unit_price=Decimal("99.00")),
                    LineItemIn(description="Seats", quantity=2, unit_price=Decimal("5.00")),
                ],
                tax_amount=Decimal("10.90"),
            ),
        )

        assert created.data.amount == Decimal("109.00")
        assert created.data.total_amount == Decimal("119.90")
        assert len(created.data.line_items) == 2

        fetched = get_invoice(request, invoice_id=created.data.id)
        assert fetched.data.invoice_number == created.data.invoice_number

    def test_create_with_foreign_subscription(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "post", "/")
        other = SubscriptionFactory()

        with pytest.raises(ValidationError, match="another organization"):
            create_invoice(
                request,
                org_id=request.organization.id,
                payload=CreateInvoiceRequest(
                    line_items=[LineItemIn(description="Plan", unit_price=Decimal("1.00"))],
                    subscription_id=other.id,
                ),
            )

    def test_list_paginated(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "get", "/", role="member")
        org = request.organization
        for _ in range(3):
            InvoiceFactory(organization=org)
        InvoiceFactory()

        result = list_invoices(request, org_id=org.id, page=0)

        assert result.meta.total == 3
        assert len(result.list) == 3

    def test_invoice_of_other_org_denied(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "get", "/")
        invoice = InvoiceFactory()

        with pytest.raises(AccessDeniedError):
            get_invoice(request, invoice_id=invoice.id)

    def test_update_status(self, request_factory: RequestFactory) -> None:
        invoice = InvoiceFactory()
        request = create_authenticated_request(
            request_factory, "put", "/", org=invoice.organization
        )

        result = update_invoice_status(
            request, invoice_id=invoice.id, payload=UpdateInvoiceStatusRequest(status="paid")
        )

        assert result.data.status == "paid"
        assert result.data.paid_at is not None

    def test_pay_twice(self, request_factory: RequestFactory) -> None:
        invoice = InvoiceFactory(status=Invoice.Status.SENT)
        request = create_authenticated_request(
            request_factory, "post", "/", org=invoice.organization
        )

        result = pay_invoice(request, invoice_id=invoice.id, payload=PayInvoiceRequest())
        assert result.message == "Invoice paid"
        assert result.data.status == "completed"
        assert result.data.amount == invoice.total_amount

        with pytest.raises(InvoiceAlreadyPaidError):
            pay_invoice(request, invoice_id=invoice.id, payload=PayInvoiceRequest())

    def test_pay_records_external_payer(self, request_factory: RequestFactory) -> None:
        invoice = InvoiceFactory(status=Invoice.Status.SENT)
        request = create_authenticated_request(
            request_factory, "post", "/", org=invoice.organization
        )

        result = pay_invoice(
            request,
            invoice_id=invoice.id,
            payload=PayInvoiceRequest(external_payer_id="PAYER-42"),
        )

        assert result.data.external_payer_id == "PAYER-42"
        assert invoice.payments.get().external_payer_id == "PAYER-42"

    def test_member_cannot_pay(self, request_factory: RequestFactory) -> None:
        invoice = InvoiceFactory()
        request = create_authenticated_request(
            request_factory, "post", "/", org=invoice.organization, role="member"
        )

        with pytest.raises(AccessDeniedError):
            pay_invoice(request, invoice_id=invoice.id, payload=PayInvoiceRequest())

    def test_download_redirects(self, request_factory: RequestFactory) -> None:
        invoice = InvoiceFactory(invoice_url="https://billing.example.com/inv.pdf")
        request = create_authenticated_request(
            request_factory, "get", "/", org=invoice.organization, role="member"
        )

        response = download_invoice(request, invoice_id=invoice.id)

        assert response.status_code == 302
        assert response["Location"] == "https://billing.example.com/inv.pdf"

    def test_pay_twice_http(self, api_client: Client, bearer_headers) -> None:
        invoice = InvoiceFactory()
        request = create_authenticated_request(
            RequestFactory(), "post", "/", org=invoice.organization
        )
        headers = bearer_headers(request.auth.user)
        url = f"/api/v1/invoices/{invoice.id}/pay"

        first = api_client.post(url, data={}, content_type="application/json", headers=headers)
        second = api_client.post(url, data={}, content_type="application/json", headers=headers)

        assert first.status_code == 200
        assert response_json(first)["message"] == "Invoice paid"
        assert second.status_code == 400
        assert response_json(second) == {
            "error_code": 400,
            "error_description": "Invoice is already paid",
        }


@pytest.mark.django_db
class TestPaymentMethodEndpoints:
    def test_create_list_default_delete(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "post", "/")
        org = request.organization

        first = create_payment_method(
            request, org_id=org.id, payload=CreatePaymentMethodRequest(email="a@example.com")
        )
        second = create_payment_method(
            request, org_id=org.id, payload=CreatePaymentMethodRequest(email="b@example.com")
        )
        assert first.data.is_default is True
        assert second.data.is_default is False

        set_default_payment_method(request, org_id=org.id, payment_method_id=second.data.id)
        listed = list_payment_methods(request, org_id=org.id)
        assert [pm.id for pm in listed.list] == [second.data.id, first.data.id]

        result = delete_payment_method(request, org_id=org.id, payment_method_id=first.data.id)
        assert result.message == "Payment method removed"
        assert PaymentMethod.objects.get(id=first.data.id).is_active is False

    def test_other_orgs_method(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "put", "/")
        foreign = PaymentMethodFactory()

        with pytest.raises(AccessDeniedError):
            set_default_payment_method(
                request, org_id=request.organization.id, payment_method_id=foreign.id
            )


@pytest.mark.django_db
class TestOverviewEndpoints:
    def test_overview(self, request_factory: RequestFactory) -> None:
        sub = SubscriptionFactory()
        InvoiceFactory(organization=sub.organization, status=Invoice.Status.SENT)
        request = create_authenticated_request(
            request_factory, "get", "/", org=sub.organization, role="member"
        )

        result = billing_overview(request, org_id=sub.organization.id)

        assert result.data.current_subscription.id == sub.id
        assert len(result.data.unpaid_invoices) == 1
        assert result.data.recent_payments == []

    def test_history(self, request_factory: RequestFactory) -> None:
        request = create_authenticated_request(request_factory, "get", "/", role="member")
        org = request.organization
        InvoiceFactory(organization=org)
        PaymentFactory(organization=org)

        result = billing_history(request, org_id=org.id, page=0)

        assert result.meta.total == 2
        assert {item.type for item in result.list} == {"invoice", "payment"}
