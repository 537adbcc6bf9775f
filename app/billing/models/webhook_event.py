"""
WebhookEvent model: idempotency record for provider webhooks.

The unique external_event_id is the idempotency guard. A row is inserted in
the same transaction as the event's ledger effect, so a failed effect leaves
no row behind and the provider's redelivery is processed normally.

Usage:
    from billing.services.idempotency import IdempotencyGuard

    with transaction.atomic():
        claim = IdempotencyGuard.try_begin(event_id, event_type, payload)
        if claim.is_fresh:
            ...  # apply ledger effect
            IdempotencyGuard.mark_processed(claim.event)
"""

from __future__ import annotations

from django.db import models

from billing.state_machines import WebhookEventStatus
from core.model_mixins import UUIDPrimaryKeyMixin


class WebhookEvent(UUIDPrimaryKeyMixin, models.Model):
    """
    Provider webhook event seen by the ingestion endpoint.

    Fields:
        external_event_id: Provider event id (unique)
        event_type: Event type (e.g. 'order.created')
        payload: Parsed JSON body, for audit and debugging
        status: processed (had an effect) or ignored (unhandled type)
        received_at: When the event was first accepted
        processed_at: When its effect was applied
        outcome: Handler result worth keeping, e.g. an uncollected refund
    """

    external_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider event id - unique constraint for idempotency",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
    )
    payload = models.JSONField(
        default=dict,
        blank=True,
    )
    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PROCESSED,
        db_index=True,
    )
    received_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
    )
    processed_at = models.DateTimeField(
        null=True,
        blank=True,
    )
    outcome = models.JSONField(
        default=dict,
        blank=True,
        help_text="Handler result details, e.g. a refund shortfall",
    )

    class Meta:
        ordering = ["-received_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["event_type", "received_at"]),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.external_event_id}, {self.event_type})"


__all__ = ["WebhookEvent"]
