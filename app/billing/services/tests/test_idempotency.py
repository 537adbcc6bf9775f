"""
Tests for IdempotencyGuard.
"""

import pytest
from django.db import transaction
from django.db.transaction import TransactionManagementError

from billing.exceptions import MalformedPayload
from billing.models import WebhookEvent
from billing.services import GuardStatus, IdempotencyGuard
from billing.state_machines import WebhookEventStatus


@pytest.mark.django_db
class TestIdempotencyGuard:
    def test_first_claim_is_fresh(self):
        with transaction.atomic():
            outcome = IdempotencyGuard.try_begin("evt_1", "order.created", {"a": 1})

        assert outcome.is_fresh
        assert outcome.event.external_event_id == "evt_1"
        assert outcome.event.payload == {"a": 1}

    def test_second_claim_sees_already_processed(self):
        with transaction.atomic():
            IdempotencyGuard.try_begin("evt_1", "order.created")
        with transaction.atomic():
            outcome = IdempotencyGuard.try_begin("evt_1", "order.created")

        assert outcome.status == GuardStatus.ALREADY_PROCESSED
        assert not outcome.is_fresh
        assert WebhookEvent.objects.filter(external_event_id="evt_1").count() == 1

    def test_claim_rolls_back_with_failed_effect(self):
        with pytest.raises(RuntimeError), transaction.atomic():
            IdempotencyGuard.try_begin("evt_1", "order.created")
            raise RuntimeError("ledger write failed")

        with transaction.atomic():
            outcome = IdempotencyGuard.try_begin("evt_1", "order.created")
        assert outcome.is_fresh

    def test_empty_id_is_malformed(self):
        with pytest.raises(MalformedPayload), transaction.atomic():
            IdempotencyGuard.try_begin("", "order.created")

    def test_mark_processed(self):
        with transaction.atomic():
            outcome = IdempotencyGuard.try_begin("evt_1", "checkout.created")
            IdempotencyGuard.mark_processed(outcome.event, WebhookEventStatus.IGNORED)

        event = WebhookEvent.objects.get(external_event_id="evt_1")
        assert event.status == WebhookEventStatus.IGNORED
        assert event.processed_at is not None


@pytest.mark.django_db(transaction=True)
def test_guard_requires_surrounding_transaction():
    with pytest.raises(TransactionManagementError):
        IdempotencyGuard.try_begin("evt_1", "order.created")
    assert not WebhookEvent.objects.exists()
