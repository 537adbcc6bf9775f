"""
URL configuration for the billing app.

Routes:
    - GET balance/
    - GET transactions/
    - GET usage/
    - GET reconciliation/runs/ and reconciliation/runs/<uuid>/
    - POST webhooks/polar/

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import path

from billing import views
from billing.webhooks.views import polar_webhook

app_name = "billing"

urlpatterns = [
    path("balance/", views.BalanceView.as_view(), name="balance"),
    path("transactions/", views.TransactionListView.as_view(), name="transactions"),
    path("usage/", views.UsageView.as_view(), name="usage"),
    path(
        "reconciliation/runs/",
        views.ReconciliationRunListView.as_view(),
        name="reconciliation_runs",
    ),
    path(
        "reconciliation/runs/<uuid:run_id>/",
        views.ReconciliationRunDetailView.as_view(),
        name="reconciliation_run_detail",
    ),
    # Webhook endpoints
    path("webhooks/polar/", polar_webhook, name="polar_webhook"),
]
