"""
DRF serializers for the billing app.

This module provides serializers for:
- Balance summaries
- Ledger entry history
- Usage rollups
- Reconciliation runs and discrepancies

All serializers are read-only: credits move only through the ledger
services, never through the API.

Related files:
    - views.py: Billing API views
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiExample, extend_schema_serializer
from rest_framework import serializers

from billing.ledger import EntryKind, LedgerEntry
from billing.models import ReconciliationDiscrepancy, ReconciliationRun


@extend_schema_serializer(
    examples=[
        OpenApiExample(
            "Balance with an in-flight reservation",
            value={"balance": 150, "reserved": 20, "available": 130},
            response_only=True,
        ),
    ]
)
class BalanceSerializer(serializers.Serializer):
    """
    Balance summary for the current account.

    Fields:
        balance: Sum of all ledger entries
        reserved: Credits held by active reservations
        available: balance - reserved
    """

    balance = serializers.IntegerField(read_only=True)
    reserved = serializers.IntegerField(read_only=True)
    available = serializers.IntegerField(read_only=True)


class LedgerEntrySerializer(serializers.ModelSerializer):
    """Read-only ledger entry."""

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "amount_delta",
            "kind",
            "external_ref",
            "cycle_key",
            "balance_after",
            "description",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class TransactionFilterSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=EntryKind.choices, required=False)


class UsageQuerySerializer(serializers.Serializer):
    days = serializers.IntegerField(min_value=1, max_value=366, default=30)


class UsageRollupSerializer(serializers.Serializer):
    """One (day, feature, model) usage bucket."""

    day = serializers.DateField()
    feature = serializers.CharField()
    model = serializers.CharField()
    credits = serializers.IntegerField()
    events = serializers.IntegerField()
    tokens_input = serializers.IntegerField()
    tokens_output = serializers.IntegerField()


class ReconciliationDiscrepancySerializer(serializers.ModelSerializer):
    class Meta:
        model = ReconciliationDiscrepancy
        fields = [
            "id",
            "discrepancy_type",
            "external_ref",
            "account",
            "expected",
            "actual",
            "details",
            "resolution",
            "reviewed",
            "reviewed_at",
            "review_notes",
            "created_at",
        ]
        read_only_fields = fields


class ReconciliationRunSerializer(serializers.ModelSerializer):
    """
    Reconciliation run summary.

    `is_balanced` is true when totals match and no discrepancy was found.
    """

    duration_seconds = serializers.FloatField(read_only=True, allow_null=True)
    is_balanced = serializers.BooleanField(read_only=True)

    class Meta:
        model = ReconciliationRun
        fields = [
            "id",
            "window_start",
            "window_end",
            "started_at",
            "completed_at",
            "status",
            "orders_checked",
            "entries_checked",
            "expected_total",
            "actual_total",
            "discrepancies_found",
            "duration_seconds",
            "is_balanced",
            "error_message",
        ]
        read_only_fields = fields


class ReconciliationRunDetailSerializer(ReconciliationRunSerializer):
    discrepancies = ReconciliationDiscrepancySerializer(many=True, read_only=True)

    class Meta(ReconciliationRunSerializer.Meta):
        fields = ReconciliationRunSerializer.Meta.fields + ["discrepancies"]
        read_only_fields = fields
