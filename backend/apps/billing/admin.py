"""Admin configuration for billing app."""

from django.contrib import admin

from apps.billing.models import (
    BillingEvent,
    Invoice,
    InvoiceLineItem,
    OrganizationUsage,
    Payment,
    PaymentMethod,
    Plan,
    Subscription,
)


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """Plans are edited here. They are never deleted, only deactivated."""

    list_display = ["name", "slug", "price_monthly", "price_yearly", "max_users", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["name", "slug"]
    prepopulated_fields = {"slug": ("name",)}
    ordering = ["price_monthly"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "organization",
        "plan",
        "status",
        "billing_cycle",
        "current_period_end",
        "cancel_at_period_end",
    ]
    list_filter = ["status", "billing_cycle", "cancel_at_period_end"]
    search_fields = ["organization__name", "external_subscription_id"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(OrganizationUsage)
class OrganizationUsageAdmin(admin.ModelAdmin):
    list_display = [
        "organization",
        "period_start",
        "users_count",
        "projects_count",
        "api_requests_count",
        "recorded_at",
    ]
    search_fields = ["organization__name"]
    ordering = ["-period_start"]


class InvoiceLineItemInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0
    readonly_fields = ["description", "quantity", "unit_price", "total_price"]
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ["invoice_number", "organization", "total_amount", "currency", "status", "paid_at"]
    list_filter = ["status", "currency"]
    search_fields = ["invoice_number", "organization__name"]
    readonly_fields = ["invoice_number", "amount", "tax_amount", "total_amount", "paid_at"]
    inlines = [InvoiceLineItemInline]
    ordering = ["-created_at"]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ["id", "organization", "amount", "currency", "status", "processed_at"]
    list_filter = ["status", "payment_method"]
    search_fields = ["external_payment_id", "organization__name", "invoice__invoice_number"]
    readonly_fields = ["id", "processed_at", "created_at"]
    ordering = ["-created_at"]


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ["organization", "payment_type", "external_email", "is_default", "is_active"]
    list_filter = ["payment_type", "is_default", "is_active"]
    search_fields = ["organization__name", "external_email"]


@admin.register(BillingEvent)
class BillingEventAdmin(admin.ModelAdmin):
    """Read-only audit trail."""

    list_display = ["event_type", "organization", "created_at"]
    list_filter = ["event_type"]
    search_fields = ["organization__name", "external_event_id"]
    readonly_fields = ["organization", "event_type", "event_data", "external_event_id", "processed_at"]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False
