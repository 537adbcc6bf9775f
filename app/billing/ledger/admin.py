"""
Django admin configuration for ledger models.

Key features:
- LedgerEntry is immutable (no add/edit/delete permissions)
- Cached balance shown next to the balance recomputed from entries
- Accounts can be deactivated, never deleted
"""

from django.contrib import admin

from .models import CreditAccount, LedgerEntry


@admin.register(CreditAccount)
class CreditAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for CreditAccount.

    The balance field is read-only: credits move only through ledger
    entries (adjustments are appended with LedgerService).
    """

    list_display = [
        "id",
        "owner_id",
        "customer_ref",
        "balance",
        "is_active",
        "created_at",
    ]
    list_filter = ["is_active", "created_at"]
    search_fields = ["id", "owner_id", "customer_ref"]
    readonly_fields = [
        "id",
        "owner_id",
        "balance",
        "computed_balance_display",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "owner_id", "customer_ref", "is_active"),
            },
        ),
        (
            "Balance",
            {
                "fields": ("balance", "computed_balance_display"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def computed_balance_display(self, obj: CreditAccount) -> int:
        """Sum of the account's entries (one aggregate query)."""
        return obj.compute_balance()

    computed_balance_display.short_description = "Balance from entries"

    def save_model(self, request, obj, form, change):
        if not change:
            super().save_model(request, obj, form, change)
        elif form.changed_data:
            # Only the edited fields: a full save() would overwrite the cached balance
            obj.save(update_fields=[*form.changed_data, "updated_at"])

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """
    Admin configuration for LedgerEntry.

    Ledger entries are immutable - they cannot be edited or deleted
    through the admin interface. Corrections should be made via
    new adjustment or refund entries.
    """

    list_display = [
        "id",
        "created_at",
        "account",
        "kind",
        "amount_delta",
        "balance_after",
        "external_ref",
        "cycle_key",
    ]
    list_filter = ["kind", "created_at"]
    search_fields = ["id", "external_ref", "account__owner_id", "description"]
    readonly_fields = [
        "id",
        "created_at",
        "account",
        "kind",
        "amount_delta",
        "balance_after",
        "external_ref",
        "cycle_key",
        "description",
        "metadata",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    list_select_related = ["account"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
