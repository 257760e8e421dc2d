"""
Tests for billing models.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.billing.models import Invoice, PaymentMethod, Subscription

from .factories import (
    InvoiceFactory,
    InvoiceLineItemFactory,
    OrganizationUsageFactory,
    PaymentMethodFactory,
    PlanFactory,
    SubscriptionFactory,
)


@pytest.mark.django_db
class TestPlanModel:
    """Tests for Plan model."""

    def test_price_for_cycle(self) -> None:
        plan = PlanFactory(price_monthly=Decimal("10.00"), price_yearly=Decimal("100.00"))
        assert plan.price_for("monthly") == Decimal("10.00")
        assert plan.price_for("yearly") == Decimal("100.00")

    def test_limits(self) -> None:
        plan = PlanFactory(max_users=3, max_projects=4)
        assert plan.limits["max_users"] == 3
        assert plan.limits["max_projects"] == 4
        assert set(plan.limits) == {
            "max_users",
            "max_projects",
            "max_environments",
            "max_schemas",
            "max_test_records_per_schema",
        }


@pytest.mark.django_db
class TestSubscriptionModel:
    """Tests for Subscription model."""

    def test_str_representation(self) -> None:
        """Should include org name, plan name and status."""
        sub = SubscriptionFactory(status=Subscription.Status.ACTIVE)
        assert sub.organization.name in str(sub)
        assert sub.plan.name in str(sub)
        assert "active" in str(sub)

    def test_is_active(self) -> None:
        assert SubscriptionFactory(status=Subscription.Status.ACTIVE).is_active is True
        assert SubscriptionFactory(status=Subscription.Status.PENDING).is_active is False
        assert SubscriptionFactory(status=Subscription.Status.CANCELLED).is_active is False

    def test_period_elapsed(self) -> None:
        running = SubscriptionFactory()
        ended = SubscriptionFactory(
            current_period_start=timezone.now() - timedelta(days=60),
            current_period_end=timezone.now() - timedelta(days=30),
        )
        assert running.period_elapsed is False
        assert ended.period_elapsed is True

    def test_second_active_subscription_rejected(self) -> None:
        """At most one active subscription per organization."""
        sub = SubscriptionFactory(status=Subscription.Status.ACTIVE)

        with pytest.raises(IntegrityError), transaction.atomic():
            SubscriptionFactory(organization=sub.organization, status=Subscription.Status.ACTIVE)

    def test_inactive_history_allowed(self) -> None:
        sub = SubscriptionFactory(status=Subscription.Status.ACTIVE)
        SubscriptionFactory(organization=sub.organization, status=Subscription.Status.CANCELLED)
        SubscriptionFactory(organization=sub.organization, status=Subscription.Status.PENDING)

        assert Subscription.objects.filter(organization=sub.organization).count() == 3


@pytest.mark.django_db
class TestOrganizationUsageModel:
    def test_counters_default_to_zero(self) -> None:
        usage = OrganizationUsageFactory()
        assert usage.counters == {
            "users_count": 0,
            "projects_count": 0,
            "environments_count": 0,
            "schemas_count": 0,
            "test_records_count": 0,
            "api_requests_count": 0,
        }

    def test_one_row_per_period(self) -> None:
        usage = OrganizationUsageFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            OrganizationUsageFactory(organization=usage.organization)


@pytest.mark.django_db
class TestInvoiceModel:
    def test_str_is_invoice_number(self) -> None:
        invoice = InvoiceFactory(invoice_number="INV-1999-000042")
        assert str(invoice) == "INV-1999-000042"

    def test_is_paid(self) -> None:
        assert InvoiceFactory(status=Invoice.Status.PAID).is_paid is True
        assert InvoiceFactory(status=Invoice.Status.SENT).is_paid is False

    def test_invoice_number_unique(self) -> None:
        InvoiceFactory(invoice_number="INV-1999-000001")

        with pytest.raises(IntegrityError), transaction.atomic():
            InvoiceFactory(invoice_number="INV-1999-000001")

    def test_total_must_equal_amount_plus_tax(self) -> None:
        with pytest.raises(IntegrityError), transaction.atomic():
            InvoiceFactory(
                amount=Decimal("10.00"),
                tax_amount=Decimal("1.00"),
                total_amount=Decimal("99.00"),
            )

    @pytest.mark.parametrize(
        ("amount", "tax"),
        [("0.10", "0.20"), ("109.00", "10.90"), ("19.99", "0.00")],
    )
    def test_consistent_totals_accepted(self, amount: str, tax: str) -> None:
        invoice = InvoiceFactory(amount=Decimal(amount), tax_amount=Decimal(tax))

        invoice.refresh_from_db()
        assert invoice.total_amount == Decimal(amount) + Decimal(tax)

    def test_line_items_deleted_with_invoice(self) -> None:
        item = InvoiceLineItemFactory()
        invoice = item.invoice

        invoice.delete()

        assert not type(item).objects.filter(pk=item.pk).exists()


@pytest.mark.django_db
class TestPaymentMethodModel:
    def test_only_one_active_default_per_org(self) -> None:
        method = PaymentMethodFactory(is_default=True)

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentMethodFactory(organization=method.organization, is_default=True)

    def test_inactive_default_does_not_conflict(self) -> None:
        method = PaymentMethodFactory(is_default=True, is_active=False)
        PaymentMethodFactory(organization=method.organization, is_default=True)

        assert (
            PaymentMethod.objects.filter(
                organization=method.organization, is_default=True, is_active=True
            ).count()
            == 1
        )
