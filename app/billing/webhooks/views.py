"""
Webhook endpoint view for Polar.

The view reads the raw body (the signature covers exact bytes), hands it to
the ingestion pipeline and turns the outcome into an HTTP response. The
event is applied synchronously: a 2xx means the credits are on the ledger.

Usage:
    # In urls.py
    from billing.webhooks.views import polar_webhook

    urlpatterns = [
        path("webhooks/polar/", polar_webhook, name="polar_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.webhooks import ingestion

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Polar-Signature"
DELIVERY_ID_HEADER = "Webhook-Id"


@csrf_exempt
@require_POST
def polar_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive a Polar webhook.

    Returns:
        JsonResponse with status:
        - 200: Event applied, duplicate, or ignored
        - 400: Malformed payload
        - 401: Missing or invalid signature
        - 409 / 422: Rejected for operator review
        - 500: Transient failure, the provider should retry
    """
    outcome = ingestion.handle(
        request.body,
        request.headers.get(SIGNATURE_HEADER, ""),
        delivery_id=request.headers.get(DELIVERY_ID_HEADER),
    )

    if not outcome.is_ack:
        logger.info(
            f"Webhook answered with {outcome.http_status}",
            extra={
                "external_event_id": outcome.external_event_id,
                "error_code": outcome.error_code,
            },
        )
    return JsonResponse(outcome.to_dict(), status=outcome.http_status)
