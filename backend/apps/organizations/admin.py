"""Admin configuration for organizations app."""

from django.contrib import admin

from apps.organizations.models import Invitation, Organization


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ["name", "slug", "status", "plan", "billing_cycle", "subscription_status"]
    list_filter = ["status", "subscription_status", "billing_cycle"]
    search_fields = ["name", "slug"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(Invitation)
class InvitationAdmin(admin.ModelAdmin):
    list_display = ["email", "organization", "role", "status", "expires_at"]
    list_filter = ["status", "role"]
    search_fields = ["email", "organization__name"]
    readonly_fields = ["token", "invited_at", "used_at"]
    ordering = ["-created_at"]
