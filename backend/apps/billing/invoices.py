"""
Invoicing engine - invoices with line items and their payment status.

Invoice numbers have the form ``INV-<year>-<6-digit sequence>``. The
sequence is a per-year counter row locked while a number is issued, so two
concurrent invoices never draw the same value. A unique-constraint
violation on insert is still retried with a fresh number and surfaced as a
retryable conflict once the attempts are used up.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.billing.events import record_billing_event
from apps.billing.exceptions import (
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    InvoiceNumberConflictError,
    InvoiceStateError,
)
from apps.billing.models import (
    DEFAULT_CURRENCY,
    ZERO,
    BillingEvent,
    Invoice,
    InvoiceLineItem,
    InvoiceSequence,
    Payment,
    Subscription,
)
from apps.billing.payments import record_payment
from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.logging import get_logger
from apps.core.utils import DEFAULT_PAGE_SIZE, paginate
from apps.organizations.models import Organization

logger = get_logger(__name__)

MAX_NUMBER_ATTEMPTS = 3
CENT = Decimal("0.01")

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    Invoice.Status.DRAFT: {Invoice.Status.SENT, Invoice.Status.PAID, Invoice.Status.CANCELLED},
    Invoice.Status.SENT: {Invoice.Status.PAID, Invoice.Status.CANCELLED},
    Invoice.Status.PAID: {Invoice.Status.REFUNDED},
    Invoice.Status.CANCELLED: set(),
    Invoice.Status.REFUNDED: set(),
}


def to_money(value: Any) -> Decimal:
    """Coerce to a Decimal rounded to cents."""
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid money amount: {value!r}") from None


@dataclass(frozen=True)
class LineItemInput:
    """One charge to put on a new invoice."""

    description: str
    unit_price: Decimal
    quantity: int = 1

    @property
    def total_price(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


def _normalize_line_items(
    line_items: Iterable[LineItemInput | Mapping[str, Any]],
) -> list[LineItemInput]:
    items = []
    for raw in line_items:
        if isinstance(raw, LineItemInput):
            item = raw
        else:
            item = LineItemInput(
                description=str(raw.get("description", "")),
                unit_price=raw.get("unit_price", ZERO),
                quantity=raw.get("quantity", 1),
            )
        if not item.description.strip():
            raise ValidationError("Line item description is required")
        if not isinstance(item.quantity, int) or item.quantity < 1:
            raise ValidationError("Line item quantity must be at least 1")
        unit_price = to_money(item.unit_price)
        if unit_price < 0:
            raise ValidationError("Line item unit price cannot be negative")
        items.append(LineItemInput(item.description.strip(), unit_price, item.quantity))

    if not items:
        raise ValidationError("Invoice requires at least one line item")
    return items


def generate_invoice_number(year: int | None = None) -> str:
    """
    Issue the next invoice number for a year.

    Must run inside a transaction: the counter row stays locked until it
    commits. A counter created for a new year starts after any numbers of
    that year already present, and numbers taken outside the counter are
    skipped.
    """
    year = year or timezone.now().year
    prefix = f"INV-{year}-"

    sequence = InvoiceSequence.objects.select_for_update().filter(year=year).first()
    if sequence is None:
        existing = Invoice.objects.filter(invoice_number__startswith=prefix).count()
        sequence, _ = InvoiceSequence.objects.get_or_create(
            year=year, defaults={"last_value": existing}
        )
        sequence = InvoiceSequence.objects.select_for_update().get(pk=sequence.pk)

    while True:
        sequence.last_value += 1
        number = f"{prefix}{sequence.last_value:06d}"
        if not Invoice.objects.filter(invoice_number=number).exists():
            break

    sequence.save(update_fields=["last_value"])
    return number


def create_invoice(
    organization: Organization,
    line_items: Iterable[LineItemInput | Mapping[str, Any]],
    tax_amount: Decimal | int | str = ZERO,
    subscription: Subscription | None = None,
    currency: str = DEFAULT_CURRENCY,
    billing_period_start: datetime | None = None,
    billing_period_end: datetime | None = None,
    due_date: datetime | None = None,
    invoice_url: str | None = None,
    external_invoice_id: str | None = None,
    status: str = Invoice.Status.DRAFT,
    actor: User | None = None,
) -> Invoice:
    """
    Create an invoice and its line items in one transaction.

    ``amount`` is the sum of line totals and ``total_amount`` is
    ``amount + tax_amount``.

    Args:
        organization: Billed organization.
        line_items: LineItemInput objects or mappings with description,
            quantity and unit_price.
        tax_amount: Flat tax added to the amount.
        subscription: Subscription being billed, if any.
        status: Initial status, 'draft' or 'sent'.

    Returns:
        The created Invoice.

    Raises:
        ValidationError: If the line items, tax, status or subscription are invalid
        InvoiceNumberConflictError: If no unique number could be allocated (retryable)
    """
    items = _normalize_line_items(line_items)
    tax = to_money(tax_amount)
    if tax < 0:
        raise ValidationError("Tax amount cannot be negative")
    if status not in (Invoice.Status.DRAFT, Invoice.Status.SENT):
        raise ValidationError("New invoices must be 'draft' or 'sent'")
    if subscription is not None and subscription.organization_id != organization.id:
        raise ValidationError("Subscription belongs to another organization")
    if len(currency) != 3:
        raise ValidationError("Currency must be a 3-letter code")

    amount = sum((item.total_price for item in items), ZERO)

    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        number = None
        try:
            with transaction.atomic():
                number = generate_invoice_number()
                invoice = Invoice.objects.create(
                    organization=organization,
                    subscription=subscription,
                    external_invoice_id=external_invoice_id,
                    invoice_number=number,
                    amount=amount,
                    tax_amount=tax,
                    total_amount=amount + tax,
                    currency=currency.upper(),
                    status=status,
                    billing_period_start=billing_period_start,
                    billing_period_end=billing_period_end,
                    due_date=due_date,
                    invoice_url=invoice_url,
                )
                InvoiceLineItem.objects.bulk_create(
                    [
                        InvoiceLineItem(
                            invoice=invoice,
                            description=item.description,
                            quantity=item.quantity,
                            unit_price=item.unit_price,
                            total_price=item.total_price,
                        )
                        for item in items
                    ]
                )
                record_billing_event(
                    BillingEvent.EventType.INVOICE_CREATED,
                    invoice,
                    {"invoice_number": number, "total_amount": invoice.total_amount},
                    actor=actor,
                )
            break
        except IntegrityError:
            logger.warning(
                "invoice_number_conflict",
                organization_id=str(organization.id),
                invoice_number=number,
                attempt=attempt,
            )
    else:
        raise InvoiceNumberConflictError()

    logger.info(
        "invoice_created",
        organization_id=str(organization.id),
        invoice_id=str(invoice.id),
        invoice_number=invoice.invoice_number,
        total_amount=invoice.total_amount,
    )
    return invoice


def _invoices() -> QuerySet[Invoice]:
    return Invoice.objects.prefetch_related("line_items")


def get_invoice(invoice_id: UUID | str) -> Invoice:
    """
    Raises:
        InvoiceNotFoundError: If no invoice has this id
    """
    try:
        return _invoices().get(id=invoice_id)
    except (Invoice.DoesNotExist, DjangoValidationError, ValueError):
        raise InvoiceNotFoundError() from None


def get_invoice_by_number(invoice_number: str) -> Invoice:
    try:
        return _invoices().get(invoice_number=invoice_number)
    except Invoice.DoesNotExist:
        raise InvoiceNotFoundError() from None


def invoices_for_organization(organization: Organization) -> QuerySet[Invoice]:
    return _invoices().filter(organization=organization).order_by("-created_at")


def list_invoices(
    organization: Organization, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[Invoice], int]:
    """One page of the organization's invoices, newest first."""
    return paginate(invoices_for_organization(organization), page, page_size)


def list_unpaid_invoices(organization: Organization) -> list[Invoice]:
    """Draft and sent invoices, newest first."""
    return list(
        invoices_for_organization(organization).filter(status__in=Invoice.UNPAID_STATUSES)
    )


def _lock_invoice(invoice: Invoice) -> Invoice:
    try:
        return Invoice.objects.select_for_update().get(pk=invoice.pk)
    except Invoice.DoesNotExist:
        raise InvoiceNotFoundError() from None


def update_invoice_status(invoice: Invoice, status: str) -> Invoice:
    """
    Move an invoice to a new status.

    Moving to ``paid`` stamps ``paid_at`` in the same write.

    Raises:
        InvoiceStateError: If the transition is not allowed
    """
    if status not in Invoice.Status.values:
        raise ValidationError(f"Unknown invoice status: {status}")

    with transaction.atomic():
        locked = _lock_invoice(invoice)
        if status not in ALLOWED_TRANSITIONS[locked.status]:
            raise InvoiceStateError(
                f"Cannot change invoice status from '{locked.status}' to '{status}'"
            )
        locked.status = status
        update_fields = ["status", "updated_at"]
        if status == Invoice.Status.PAID:
            locked.paid_at = timezone.now()
            update_fields.append("paid_at")
        locked.save(update_fields=update_fields)

    invoice.status = locked.status
    invoice.paid_at = locked.paid_at
    invoice.updated_at = locked.updated_at
    logger.info(
        "invoice_status_updated",
        invoice_id=str(invoice.id),
        invoice_number=invoice.invoice_number,
        status=status,
    )
    return invoice


def delete_invoice(invoice: Invoice) -> None:
    """
    Delete an invoice and its line items in one transaction.

    Raises:
        InvoiceStateError: If the invoice was paid or refunded
    """
    with transaction.atomic():
        locked = _lock_invoice(invoice)
        if locked.status in (Invoice.Status.PAID, Invoice.Status.REFUNDED):
            raise InvoiceStateError("Paid invoices cannot be deleted")
        InvoiceLineItem.objects.filter(invoice=locked).delete()
        locked.delete()

    logger.info("invoice_deleted", invoice_number=invoice.invoice_number)


def pay_invoice(
    invoice: Invoice,
    payer: User | None = None,
    external_payment_id: str | None = None,
    external_payer_id: str | None = None,
) -> Payment:
    """
    Settle an invoice in full through the external processor.

    Creates a completed payment for the invoice total and marks the invoice
    paid, in one transaction.

    Raises:
        InvoiceAlreadyPaidError: If the invoice is already paid
        InvoiceStateError: If the invoice was cancelled or refunded
    """
    with transaction.atomic():
        locked = _lock_invoice(invoice)
        if locked.status == Invoice.Status.PAID:
            raise InvoiceAlreadyPaidError()
        if locked.status not in Invoice.UNPAID_STATUSES:
            raise InvoiceStateError(f"Cannot pay an invoice with status '{locked.status}'")

        payment = record_payment(
            organization=locked.organization,
            amount=locked.total_amount,
            currency=locked.currency,
            invoice=locked,
            subscription=locked.subscription,
            external_payment_id=external_payment_id or f"PAY_{uuid4().hex}",
            external_payer_id=external_payer_id,
            status=Payment.Status.COMPLETED,
        )

        locked.status = Invoice.Status.PAID
        locked.paid_at = payment.processed_at
        locked.save(update_fields=["status", "paid_at", "updated_at"])

        record_billing_event(
            BillingEvent.EventType.PAYMENT_SUCCEEDED,
            payment,
            {
                "invoice_id": str(locked.id),
                "invoice_number": locked.invoice_number,
                "amount": payment.amount,
                "currency": payment.currency,
            },
            actor=payer,
        )

    invoice.status = locked.status
    invoice.paid_at = locked.paid_at
    logger.info(
        "invoice_paid",
        organization_id=str(locked.organization_id),
        invoice_number=locked.invoice_number,
        payment_id=str(payment.id),
        amount=payment.amount,
    )
    return payment


def get_download_url(invoice: Invoice) -> str:
    """
    Raises:
        NotFoundError: If the invoice has no hosted document
    """
    if not invoice.invoice_url:
        raise NotFoundError("Invoice download not available")
    return invoice.invoice_url
