"""Admin configuration for accounts app."""

from django.contrib import admin

from apps.accounts.models import Member, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ["email", "name", "is_active", "is_staff", "created_at"]
    list_filter = ["is_active", "is_staff"]
    search_fields = ["email", "name"]
    readonly_fields = ["id", "last_login", "created_at", "updated_at"]
    exclude = ["password"]
    ordering = ["-created_at"]


@admin.register(Member)
class MemberAdmin(admin.ModelAdmin):
    list_display = ["user", "organization", "role", "status", "joined_at"]
    list_filter = ["role", "status"]
    search_fields = ["user__email", "organization__name"]
    ordering = ["-created_at"]
