"""
Usage meter - per-organization resource counters bucketed by calendar month.

Rows are created lazily on the first usage event of a period. Increments
are a single ``UPDATE ... SET col = col + n`` so concurrent callers never
lose updates; the unique (organization, period_start, period_end)
constraint decides which of two concurrent creators inserts the row.
"""

from collections.abc import Mapping
from datetime import datetime

from dateutil.relativedelta import relativedelta
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from apps.billing.models import OrganizationUsage
from apps.core.exceptions import ValidationError
from apps.core.logging import get_logger
from apps.core.utils import DEFAULT_PAGE_SIZE, paginate
from apps.organizations.models import Organization

logger = get_logger(__name__)

# An insert can lose the race at most once per period; two retries is ample.
MAX_INCREMENT_ATTEMPTS = 3


def current_period(now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Calendar month containing ``now`` as a half-open interval.

    Returns:
        Tuple of (first instant of the month, first instant of the next month)
    """
    now = now or timezone.now()
    period_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return period_start, period_start + relativedelta(months=1)


def _validate_field(field: str) -> None:
    if field not in OrganizationUsage.COUNTER_FIELDS:
        raise ValidationError(f"Unknown usage field: {field}")


def get_current_usage(
    organization: Organization, now: datetime | None = None
) -> OrganizationUsage | None:
    """Usage row for the current period, or None when nothing was recorded yet."""
    period_start, period_end = current_period(now)
    return OrganizationUsage.objects.filter(
        organization=organization,
        period_start=period_start,
        period_end=period_end,
    ).first()


def increment_usage(
    organization: Organization,
    field: str,
    delta: int = 1,
    now: datetime | None = None,
) -> OrganizationUsage:
    """
    Atomically add ``delta`` to one counter of the current period.

    Creates the period row seeded with ``field=delta`` when it does not
    exist yet. Safe under concurrent calls for the same organization.

    Args:
        organization: Organization whose usage is adjusted.
        field: One of OrganizationUsage.COUNTER_FIELDS.
        delta: Amount to add; negative values decrement.
        now: Clock override, mainly for tests.

    Returns:
        The refreshed usage row.

    Raises:
        ValidationError: If ``field`` is not a usage counter
    """
    _validate_field(field)
    period_start, period_end = current_period(now)
    rows = OrganizationUsage.objects.filter(
        organization=organization,
        period_start=period_start,
        period_end=period_end,
    )

    for _attempt in range(MAX_INCREMENT_ATTEMPTS):
        stamp = timezone.now()
        updated = rows.update(**{field: F(field) + delta}, recorded_at=stamp, updated_at=stamp)
        if updated:
            break
        try:
            with transaction.atomic():
                OrganizationUsage.objects.create(
                    organization=organization,
                    period_start=period_start,
                    period_end=period_end,
                    recorded_at=stamp,
                    **{field: delta},
                )
            break
        except IntegrityError:
            # Concurrent insert won the race, apply the delta to its row
            logger.debug("usage_row_insert_race", organization_id=str(organization.id))
    else:
        raise IntegrityError("Could not record usage increment")

    usage = rows.get()
    logger.info(
        "usage_incremented",
        organization_id=str(organization.id),
        field=field,
        delta=delta,
        value=getattr(usage, field),
    )
    return usage


def upsert_current_usage(
    organization: Organization,
    values: Mapping[str, int],
    now: datetime | None = None,
) -> OrganizationUsage:
    """
    Set absolute counter values for the current period.

    Counters not named in ``values`` keep their stored value (or 0 for a new
    row). ``recorded_at`` is refreshed on every call.

    Raises:
        ValidationError: If a key is not a usage counter
    """
    for field in values:
        _validate_field(field)

    period_start, period_end = current_period(now)
    usage, created = OrganizationUsage.objects.update_or_create(
        organization=organization,
        period_start=period_start,
        period_end=period_end,
        defaults={**values, "recorded_at": timezone.now()},
    )
    logger.info(
        "usage_recorded",
        organization_id=str(organization.id),
        created=created,
        fields=sorted(values),
    )
    return usage


def get_usage_history(
    organization: Organization, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[OrganizationUsage], int]:
    """All recorded periods for an organization, newest first."""
    queryset = OrganizationUsage.objects.filter(organization=organization).order_by(
        "-period_start"
    )
    return paginate(queryset, page, page_size)
