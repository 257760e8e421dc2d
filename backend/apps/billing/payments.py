"""
Payment ledger - payment attempts and stored payment methods.

Status updates on a payment take its row lock, so a completion and a
failure report for the same payment are applied one after the other.
Changing the default payment method locks the organization row and
clears the previous default in the same transaction.
"""

from decimal import Decimal
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.billing.events import record_billing_event
from apps.billing.exceptions import PaymentMethodNotFoundError, PaymentNotFoundError
from apps.billing.models import (
    DEFAULT_CURRENCY,
    BillingEvent,
    Invoice,
    Payment,
    PaymentMethod,
    Subscription,
)
from apps.core.exceptions import AccessDeniedError, ValidationError
from apps.core.logging import get_logger
from apps.core.utils import DEFAULT_PAGE_SIZE, paginate
from apps.organizations.models import Organization

logger = get_logger(__name__)

RECENT_PAYMENTS_LIMIT = 5


# Payments


def record_payment(
    organization: Organization,
    amount: Decimal,
    currency: str = DEFAULT_CURRENCY,
    invoice: Invoice | None = None,
    subscription: Subscription | None = None,
    external_payment_id: str | None = None,
    external_payer_id: str | None = None,
    status: str = Payment.Status.PENDING,
) -> Payment:
    """
    Record a payment attempt.

    A payment recorded as ``completed`` gets ``processed_at`` right away.

    Raises:
        ValidationError: If the amount is negative, the status unknown, or the
            invoice/subscription belongs to another organization
    """
    if amount < 0:
        raise ValidationError("Payment amount cannot be negative")
    if status not in Payment.Status.values:
        raise ValidationError(f"Unknown payment status: {status}")
    for related in (invoice, subscription):
        if related is not None and related.organization_id != organization.id:
            raise ValidationError("Payment must belong to the same organization")

    payment = Payment.objects.create(
        organization=organization,
        invoice=invoice,
        subscription=subscription,
        external_payment_id=external_payment_id,
        external_payer_id=external_payer_id,
        amount=amount,
        currency=currency,
        status=status,
        processed_at=timezone.now() if status == Payment.Status.COMPLETED else None,
    )
    logger.info(
        "payment_recorded",
        organization_id=str(organization.id),
        payment_id=str(payment.id),
        amount=payment.amount,
        status=status,
    )
    return payment


def _lock_payment(payment_id: UUID | str) -> Payment:
    try:
        return Payment.objects.select_for_update().get(id=payment_id)
    except (Payment.DoesNotExist, DjangoValidationError, ValueError):
        raise PaymentNotFoundError() from None


def update_payment_status(payment_id: UUID | str, status: str) -> Payment:
    """
    Set a payment's status under its row lock.

    ``completed`` stamps ``processed_at``.

    Raises:
        PaymentNotFoundError: If the payment does not exist
        ValidationError: If the status is unknown
    """
    if status not in Payment.Status.values:
        raise ValidationError(f"Unknown payment status: {status}")

    with transaction.atomic():
        payment = _lock_payment(payment_id)
        payment.status = status
        update_fields = ["status", "updated_at"]
        if status == Payment.Status.COMPLETED:
            payment.processed_at = timezone.now()
            update_fields.append("processed_at")
        payment.save(update_fields=update_fields)
        if status == Payment.Status.COMPLETED:
            record_billing_event(
                BillingEvent.EventType.PAYMENT_SUCCEEDED,
                payment,
                {"amount": payment.amount, "currency": payment.currency},
            )

    logger.info("payment_status_updated", payment_id=str(payment.id), status=status)
    return payment


def record_payment_failure(payment_id: UUID | str, reason: str) -> Payment:
    """
    Mark a payment failed and store the reason in one write.

    Raises:
        PaymentNotFoundError: If the payment does not exist
    """
    with transaction.atomic():
        payment = _lock_payment(payment_id)
        payment.status = Payment.Status.FAILED
        payment.failure_reason = reason
        payment.save(update_fields=["status", "failure_reason", "updated_at"])
        record_billing_event(
            BillingEvent.EventType.PAYMENT_FAILED,
            payment,
            {"reason": reason},
        )

    logger.warning("payment_failed", payment_id=str(payment.id), reason=reason)
    return payment


def get_payment(payment_id: UUID | str) -> Payment:
    try:
        return Payment.objects.get(id=payment_id)
    except (Payment.DoesNotExist, DjangoValidationError, ValueError):
        raise PaymentNotFoundError() from None


def get_payment_by_external_id(external_payment_id: str) -> Payment:
    try:
        return Payment.objects.get(external_payment_id=external_payment_id)
    except Payment.DoesNotExist:
        raise PaymentNotFoundError() from None


def payments_for_organization(organization: Organization) -> QuerySet[Payment]:
    return Payment.objects.filter(organization=organization).order_by("-created_at")


def list_payments(
    organization: Organization, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[Payment], int]:
    return paginate(payments_for_organization(organization), page, page_size)


def list_payments_for_invoice(invoice: Invoice) -> list[Payment]:
    return list(Payment.objects.filter(invoice=invoice).order_by("-created_at"))


def list_payments_for_subscription(subscription: Subscription) -> list[Payment]:
    return list(Payment.objects.filter(subscription=subscription).order_by("-created_at"))


def recent_payments(
    organization: Organization, limit: int = RECENT_PAYMENTS_LIMIT
) -> list[Payment]:
    return list(payments_for_organization(organization)[:limit])


# Payment methods


def list_payment_methods(organization: Organization) -> list[PaymentMethod]:
    """Active payment methods, default first."""
    return list(
        PaymentMethod.objects.filter(organization=organization, is_active=True).order_by(
            "-is_default", "-created_at"
        )
    )


def get_default_payment_method(organization: Organization) -> PaymentMethod | None:
    return PaymentMethod.objects.filter(
        organization=organization, is_active=True, is_default=True
    ).first()


def get_payment_method(
    organization: Organization, payment_method_id: UUID | str, for_update: bool = False
) -> PaymentMethod:
    """
    Fetch an active payment method and check it belongs to the organization.

    Raises:
        PaymentMethodNotFoundError: If no active method has this id
        AccessDeniedError: If the method belongs to another organization
    """
    queryset = PaymentMethod.objects.filter(is_active=True)
    if for_update:
        queryset = queryset.select_for_update()
    try:
        payment_method = queryset.get(id=payment_method_id)
    except (PaymentMethod.DoesNotExist, DjangoValidationError, ValueError):
        raise PaymentMethodNotFoundError() from None

    if payment_method.organization_id != organization.id:
        logger.warning(
            "access_denied",
            organization_id=str(organization.id),
            payment_method_id=str(payment_method.id),
            reason="payment_method_of_other_organization",
        )
        raise AccessDeniedError("Access denied to this payment method")
    return payment_method


def _make_default(organization: Organization, payment_method: PaymentMethod) -> None:
    """Clear every default of the organization, then set one. Caller holds the org lock."""
    PaymentMethod.objects.filter(organization=organization, is_default=True).exclude(
        pk=payment_method.pk
    ).update(is_default=False, updated_at=timezone.now())
    payment_method.is_default = True
    payment_method.save(update_fields=["is_default", "updated_at"])


def create_payment_method(
    organization: Organization,
    created_by: User | None = None,
    external_email: str | None = None,
    external_payer_id: str | None = None,
    is_default: bool = False,
    payment_type: str = Payment.Method.PAYPAL,
) -> PaymentMethod:
    """
    Store a new payment method.

    The organization's first method becomes the default even when
    ``is_default`` is False.
    """
    if payment_type not in Payment.Method.values:
        raise ValidationError(f"Unsupported payment method type: {payment_type}")

    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=organization.pk).first()
        payment_method = PaymentMethod.objects.create(
            organization=organization,
            payment_type=payment_type,
            external_email=external_email,
            external_payer_id=external_payer_id,
            is_default=False,
            created_by=created_by,
        )
        if is_default or get_default_payment_method(organization) is None:
            _make_default(organization, payment_method)

    logger.info(
        "payment_method_created",
        organization_id=str(organization.id),
        payment_method_id=str(payment_method.id),
        is_default=payment_method.is_default,
    )
    return payment_method


def update_payment_method(
    organization: Organization,
    payment_method_id: UUID | str,
    external_email: str | None = None,
    external_payer_id: str | None = None,
    is_default: bool | None = None,
) -> PaymentMethod:
    """
    Partially update a payment method. Arguments left as None are not touched.

    ``is_default=True`` runs the set-default procedure; ``is_default=False``
    clears the flag.
    """
    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=organization.pk).first()
        payment_method = get_payment_method(organization, payment_method_id, for_update=True)

        update_fields = ["updated_at"]
        if external_email is not None:
            payment_method.external_email = external_email
            update_fields.append("external_email")
        if external_payer_id is not None:
            payment_method.external_payer_id = external_payer_id
            update_fields.append("external_payer_id")
        if is_default is False:
            payment_method.is_default = False
            update_fields.append("is_default")
        payment_method.save(update_fields=update_fields)

        if is_default:
            _make_default(organization, payment_method)

    logger.info(
        "payment_method_updated",
        organization_id=str(organization.id),
        payment_method_id=str(payment_method.id),
    )
    return payment_method


def set_default_payment_method(
    organization: Organization, payment_method_id: UUID | str
) -> PaymentMethod:
    """
    Make one active payment method the organization's only default.

    Raises:
        PaymentMethodNotFoundError: If the method is unknown or inactive
        AccessDeniedError: If the method belongs to another organization
    """
    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=organization.pk).first()
        payment_method = get_payment_method(organization, payment_method_id, for_update=True)
        _make_default(organization, payment_method)

    logger.info(
        "payment_method_default_set",
        organization_id=str(organization.id),
        payment_method_id=str(payment_method.id),
    )
    return payment_method


def deactivate_payment_method(
    organization: Organization, payment_method_id: UUID | str
) -> PaymentMethod:
    """Soft-delete a payment method. It also stops being the default."""
    with transaction.atomic():
        payment_method = get_payment_method(organization, payment_method_id, for_update=True)
        payment_method.is_active = False
        payment_method.is_default = False
        payment_method.save(update_fields=["is_active", "is_default", "updated_at"])

    logger.info(
        "payment_method_deactivated",
        organization_id=str(organization.id),
        payment_method_id=str(payment_method.id),
    )
    return payment_method
