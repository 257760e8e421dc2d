"""
Plan catalog - read access to subscription tiers.

Plans are edited through the Django admin and seeded by the
``seed_plans`` management command; there is no API write path.
"""

from decimal import Decimal
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import QuerySet

from apps.billing.exceptions import PlanNotFoundError
from apps.billing.models import Plan
from apps.core.utils import DEFAULT_PAGE_SIZE, paginate


def active_plans() -> QuerySet[Plan]:
    return Plan.objects.filter(is_active=True).order_by("price_monthly", "name")


def list_active_plans() -> list[Plan]:
    """All active plans, cheapest first."""
    return list(active_plans())


def list_plans_page(page: int, page_size: int = DEFAULT_PAGE_SIZE) -> tuple[list[Plan], int]:
    """One zero-indexed page of active plans, with the total count."""
    return paginate(active_plans(), page, page_size)


def compare_plans() -> list[Plan]:
    """Full active catalog; comparison happens client-side."""
    return list_active_plans()


def get_plan(plan_id: UUID | str) -> Plan:
    """
    Fetch an active plan by id.

    Raises:
        PlanNotFoundError: If no active plan has this id
    """
    try:
        return active_plans().get(id=plan_id)
    except (Plan.DoesNotExist, DjangoValidationError, ValueError):
        raise PlanNotFoundError() from None


def get_plan_by_slug(slug: str) -> Plan:
    """
    Fetch an active plan by slug.

    Raises:
        PlanNotFoundError: If no active plan has this slug
    """
    try:
        return active_plans().get(slug=slug)
    except Plan.DoesNotExist:
        raise PlanNotFoundError() from None


DEFAULT_PLANS: list[dict] = [
    {
        "slug": "free",
        "name": "Free",
        "description": "For trying things out.",
        "price_monthly": Decimal("0.00"),
        "price_yearly": Decimal("0.00"),
        "max_users": 3,
        "max_projects": 1,
        "max_environments": 2,
        "max_schemas": 5,
        "max_test_records_per_schema": 1000,
        "features": ["basic_generation"],
    },
    {
        "slug": "starter",
        "name": "Starter",
        "description": "For small teams.",
        "price_monthly": Decimal("29.00"),
        "price_yearly": Decimal("290.00"),
        "max_users": 10,
        "max_projects": 5,
        "max_environments": 5,
        "max_schemas": 25,
        "max_test_records_per_schema": 10000,
        "features": ["basic_generation", "api_access"],
    },
    {
        "slug": "professional",
        "name": "Professional",
        "description": "For growing teams.",
        "price_monthly": Decimal("99.00"),
        "price_yearly": Decimal("990.00"),
        "max_users": 50,
        "max_projects": 25,
        "max_environments": 20,
        "max_schemas": 100,
        "max_test_records_per_schema": 100000,
        "features": ["basic_generation", "api_access", "priority_support"],
    },
    {
        "slug": "enterprise",
        "name": "Enterprise",
        "description": "For organizations with advanced needs.",
        "price_monthly": Decimal("299.00"),
        "price_yearly": Decimal("2990.00"),
        "max_users": 500,
        "max_projects": 200,
        "max_environments": 100,
        "max_schemas": 1000,
        "max_test_records_per_schema": 1000000,
        "features": ["basic_generation", "api_access", "priority_support", "sso", "audit_log"],
    },
]


def seed_default_plans(update_existing: bool = False) -> tuple[int, int]:
    """
    Create the default catalog.

    Existing plans (matched by slug) are only overwritten with
    ``update_existing``.

    Returns:
        Tuple of (created count, updated count)
    """
    created = updated = 0
    for entry in DEFAULT_PLANS:
        defaults = {k: v for k, v in entry.items() if k != "slug"}
        plan = Plan.objects.filter(slug=entry["slug"]).first()
        if plan is None:
            Plan.objects.create(slug=entry["slug"], **defaults)
            created += 1
        elif update_existing:
            for key, value in defaults.items():
                setattr(plan, key, value)
            plan.save()
            updated += 1
    return created, updated
