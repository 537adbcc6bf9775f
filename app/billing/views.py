"""
DRF views for the billing app.

Endpoints:
    GET /api/v1/billing/balance/ - Balance, reserved and available credits
    GET /api/v1/billing/transactions/ - Ledger entries, newest first
    GET /api/v1/billing/usage/ - Usage rollups by day, feature and model
    GET /api/v1/billing/reconciliation/runs/ - Reconciliation runs (staff)
    GET /api/v1/billing/reconciliation/runs/{id}/ - Run with discrepancies (staff)

Security:
    - Account endpoints require authentication; the account belongs to
      request.user and is opened (with the welcome bonus) on first access
    - Reconciliation endpoints are staff only
"""

from __future__ import annotations

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import generics
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.ledger import CreditAccount, EntryKind, LedgerEntry, ledger
from billing.models import ReconciliationRun
from billing.pagination import LedgerCursorPagination, ReconciliationRunPagination
from billing.serializers import (
    BalanceSerializer,
    LedgerEntrySerializer,
    ReconciliationRunDetailSerializer,
    ReconciliationRunSerializer,
    TransactionFilterSerializer,
    UsageQuerySerializer,
    UsageRollupSerializer,
)
from billing.services import AnalyticsService


def account_for(request) -> CreditAccount:
    """The caller's credit account, opened on first use."""
    return ledger.open_account(owner_id=str(request.user.pk))


class BalanceView(APIView):
    """
    Get the current account's balance.

    GET /api/v1/billing/balance/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_balance",
        summary="Get credit balance",
        responses={200: BalanceSerializer},
        tags=["Billing"],
    )
    def get(self, request):
        account = account_for(request)
        reserved = ledger.held_amount(account.id)
        serializer = BalanceSerializer(
            {
                "balance": account.balance,
                "reserved": reserved,
                "available": account.balance - reserved,
            }
        )
        return Response(serializer.data)


class TransactionListView(generics.ListAPIView):
    """
    List the current account's ledger entries, newest first.

    GET /api/v1/billing/transactions/?kind=usage&cursor=...
    """

    permission_classes = [IsAuthenticated]
    serializer_class = LedgerEntrySerializer
    pagination_class = LedgerCursorPagination

    @extend_schema(
        operation_id="list_transactions",
        summary="List ledger entries",
        parameters=[
            OpenApiParameter(
                name="kind",
                description="Only entries of this kind",
                required=False,
                type=str,
                enum=EntryKind.values,
            ),
        ],
        tags=["Billing"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        filters = TransactionFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)

        queryset = LedgerEntry.objects.filter(account=account_for(self.request))
        kind = filters.validated_data.get("kind")
        if kind:
            queryset = queryset.filter(kind=kind)
        return queryset


class UsageView(APIView):
    """
    Usage rollups for the current account.

    GET /api/v1/billing/usage/?days=30

    Rollups are cached and may be a few minutes stale.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_usage",
        summary="Get usage rollups",
        parameters=[UsageQuerySerializer],
        responses={200: UsageRollupSerializer(many=True)},
        tags=["Billing"],
    )
    def get(self, request):
        query = UsageQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        days = query.validated_data["days"]

        account = account_for(request)
        rollups = AnalyticsService.usage_rollup(account_id=account.id, days=days)
        return Response(
            {
                "days": days,
                "results": UsageRollupSerializer(rollups, many=True).data,
            }
        )


class ReconciliationRunListView(generics.ListAPIView):
    """
    Reconciliation runs, newest first.

    GET /api/v1/billing/reconciliation/runs/
    """

    permission_classes = [IsAdminUser]
    serializer_class = ReconciliationRunSerializer
    pagination_class = ReconciliationRunPagination
    queryset = ReconciliationRun.objects.all()

    @extend_schema(
        operation_id="list_reconciliation_runs",
        summary="List reconciliation runs",
        tags=["Billing - Reconciliation"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class ReconciliationRunDetailView(APIView):
    """
    One reconciliation run with its discrepancies.

    GET /api/v1/billing/reconciliation/runs/{run_id}/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_reconciliation_run",
        summary="Get reconciliation run",
        responses={
            200: ReconciliationRunDetailSerializer,
            404: OpenApiResponse(description="Run not found"),
        },
        tags=["Billing - Reconciliation"],
    )
    def get(self, request, run_id):
        run = get_object_or_404(
            ReconciliationRun.objects.prefetch_related("discrepancies"), pk=run_id
        )
        return Response(ReconciliationRunDetailSerializer(run).data)
