"""
Billing admin configuration.

This file imports admin configurations from the ledger submodule
and registers the billing domain models with the Django admin.
"""

from django.contrib import admin

from billing.ledger.admin import CreditAccountAdmin, LedgerEntryAdmin
from billing.models import (
    ReconciliationDiscrepancy,
    ReconciliationRun,
    Reservation,
    Subscription,
    WebhookEvent,
)
from billing.services import ReconciliationService

__all__ = [
    "CreditAccountAdmin",
    "LedgerEntryAdmin",
    "ReservationAdmin",
    "SubscriptionAdmin",
    "WebhookEventAdmin",
    "ReconciliationRunAdmin",
    "ReconciliationDiscrepancyAdmin",
]


@admin.register(Reservation)
class ReservationAdmin(admin.ModelAdmin):
    """
    Admin configuration for Reservation.

    Read-only: reservations change state only through ReservationService
    and the expiry sweep.
    """

    list_display = [
        "id",
        "account",
        "amount_reserved",
        "amount_committed",
        "status",
        "feature",
        "model",
        "expires_at",
        "created_at",
    ]
    list_filter = ["status", "feature", "created_at"]
    search_fields = ["id", "account__owner_id", "feature", "model"]
    readonly_fields = [
        "id",
        "account",
        "amount_reserved",
        "amount_committed",
        "status",
        "feature",
        "model",
        "metadata",
        "expires_at",
        "resolved_at",
        "ledger_entry",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """Provides visibility into mirrored provider subscriptions."""

    list_display = [
        "provider_subscription_id",
        "account",
        "plan_ref",
        "credits_per_cycle",
        "interval",
        "status",
        "provider_status",
        "last_granted_cycle",
        "ends_at",
    ]
    list_filter = ["status", "interval", "plan_ref"]
    search_fields = ["provider_subscription_id", "account__owner_id", "plan_ref"]
    readonly_fields = [
        "id",
        "provider_subscription_id",
        "account",
        "plan_ref",
        "credits_per_cycle",
        "interval",
        "anchor_at",
        "status",
        "provider_status",
        "canceled_at",
        "ends_at",
        "last_granted_cycle",
        "metadata",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "external_event_id",
        "event_type",
        "status",
        "received_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type", "received_at"]
    search_fields = ["id", "external_event_id", "event_type"]
    readonly_fields = [
        "id",
        "external_event_id",
        "event_type",
        "status",
        "payload",
        "outcome",
        "received_at",
        "processed_at",
    ]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False


# =============================================================================
# Reconciliation Admin
# =============================================================================


class ReconciliationDiscrepancyInline(admin.TabularInline):
    """Inline display of discrepancies for a reconciliation run."""

    model = ReconciliationDiscrepancy
    extra = 0
    readonly_fields = [
        "id",
        "discrepancy_type",
        "external_ref",
        "account",
        "expected",
        "actual",
        "resolution",
        "reviewed",
    ]
    fields = readonly_fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationRun.

    Runs are created by the reconciliation service and should not be
    manually modified.
    """

    list_display = [
        "id",
        "started_at",
        "status",
        "duration_display",
        "orders_checked",
        "expected_total",
        "actual_total",
        "discrepancies_found",
    ]
    list_filter = ["status", "started_at"]
    search_fields = ["id"]
    readonly_fields = [
        "id",
        "window_start",
        "window_end",
        "started_at",
        "completed_at",
        "duration_display",
        "orders_checked",
        "entries_checked",
        "expected_total",
        "actual_total",
        "discrepancies_found",
        "status",
        "error_message",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]
    inlines = [ReconciliationDiscrepancyInline]

    def duration_display(self, obj: ReconciliationRun) -> str:
        """Display the run duration in human-readable format."""
        if obj.duration_seconds is not None:
            return f"{obj.duration_seconds:.1f}s"
        return "Running..."

    duration_display.short_description = "Duration"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for reconciliation runs (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ReconciliationDiscrepancy)
class ReconciliationDiscrepancyAdmin(admin.ModelAdmin):
    """
    Review queue for flagged discrepancies.

    Corrections are never made here: an operator appends an adjustment or
    refund entry, then marks the discrepancy reviewed.
    """

    list_display = [
        "id",
        "run",
        "discrepancy_type",
        "external_ref",
        "account",
        "expected",
        "actual",
        "resolution",
        "reviewed",
        "created_at",
    ]
    list_filter = ["resolution", "reviewed", "discrepancy_type", "created_at"]
    search_fields = ["id", "external_ref", "account__owner_id"]
    readonly_fields = [
        "id",
        "run",
        "discrepancy_type",
        "external_ref",
        "account",
        "expected",
        "actual",
        "details",
        "resolution",
        "reviewed",
        "reviewed_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["mark_reviewed"]

    @admin.action(description="Mark selected discrepancies as reviewed")
    def mark_reviewed(self, request, queryset):
        """Bulk action to mark discrepancies as reviewed."""
        count = ReconciliationService.mark_reviewed(
            list(queryset.values_list("id", flat=True)),
            notes=f"Reviewed by {request.user}",
        )
        self.message_user(request, f"Marked {count} discrepancies as reviewed.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for discrepancies (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False
