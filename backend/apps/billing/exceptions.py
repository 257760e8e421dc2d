"""
Exceptions for billing app.

Domain conflicts are validation errors: callers treat them as terminal.
Invoice number collisions are conflicts and may be retried.
"""

from apps.core.exceptions import ConflictError, NotFoundError, ValidationError


class PlanNotFoundError(NotFoundError):
    """No active plan matches the id or slug."""

    def __init__(self, message: str = "Plan not found") -> None:
        super().__init__(message)


class SubscriptionNotFoundError(NotFoundError):
    """The organization has no matching subscription."""

    def __init__(self, message: str = "No active subscription found") -> None:
        super().__init__(message)


class ActiveSubscriptionExistsError(ValidationError):
    """The organization already has an active subscription."""

    def __init__(self, message: str = "Organization already has an active subscription") -> None:
        super().__init__(message)


class SubscriptionStateError(ValidationError):
    """The requested transition is not allowed from the current status."""

    pass


class InvoiceNotFoundError(NotFoundError):
    """Unknown invoice id or number."""

    def __init__(self, message: str = "Invoice not found") -> None:
        super().__init__(message)


class InvoiceAlreadyPaidError(ValidationError):
    """Payment attempted on an invoice that is already paid."""

    def __init__(self, message: str = "Invoice is already paid") -> None:
        super().__init__(message)


class InvoiceStateError(ValidationError):
    """Invoice status transition not allowed."""

    pass


class InvoiceNumberConflictError(ConflictError):
    """Invoice number collided with an existing row after all retries."""

    def __init__(self, message: str = "Could not allocate an invoice number, retry") -> None:
        super().__init__(message)


class PaymentNotFoundError(NotFoundError):
    """Unknown payment id or external payment id."""

    def __init__(self, message: str = "Payment not found") -> None:
        super().__init__(message)


class PaymentMethodNotFoundError(NotFoundError):
    """Unknown or inactive payment method."""

    def __init__(self, message: str = "Payment method not found") -> None:
        super().__init__(message)
