"""
Tests for the Polar webhook endpoint.
"""

import pytest
from django.urls import reverse

from billing.models import WebhookEvent

WEBHOOK_URL = "billing:polar_webhook"


@pytest.mark.django_db
class TestPolarWebhookView:
    def post(self, client, body, signature=None, **headers):
        if signature is not None:
            headers["HTTP_X_POLAR_SIGNATURE"] = signature
        return client.post(
            reverse(WEBHOOK_URL), data=body, content_type="application/json", **headers
        )

    def test_applies_signed_event(self, client, account, webhook_body, order_data):
        body, signature = webhook_body("order.created", order_data(), event_id="evt_1")

        response = self.post(client, body, signature)

        assert response.status_code == 200
        assert response.json() == {"status": "applied", "event_id": "evt_1"}
        account.refresh_from_db()
        assert account.balance == 100

    def test_duplicate_is_acknowledged(self, client, account, webhook_body, order_data):
        body, signature = webhook_body("order.created", order_data(), event_id="evt_1")
        self.post(client, body, signature)

        response = self.post(client, body, signature)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"
        account.refresh_from_db()
        assert account.balance == 100

    def test_missing_signature_is_401(self, client, webhook_body, order_data):
        body, _ = webhook_body("order.created", order_data())

        response = self.post(client, body)

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_SIGNATURE"
        assert not WebhookEvent.objects.exists()

    def test_delivery_id_header_identifies_event(self, client, account, webhook_body, order_data):
        body, signature = webhook_body("order.created", order_data())

        response = self.post(client, body, signature, HTTP_WEBHOOK_ID="msg_123")

        assert response.json()["event_id"] == "msg_123"
        assert WebhookEvent.objects.filter(external_event_id="msg_123").exists()

    def test_unknown_account_is_422(self, client, webhook_body, order_data):
        body, signature = webhook_body("order.created", order_data(customer_id="cus_x"))

        response = self.post(client, body, signature)

        assert response.status_code == 422
        assert response.json()["error_code"] == "UNKNOWN_ACCOUNT"

    def test_get_not_allowed(self, client):
        assert client.get(reverse(WEBHOOK_URL)).status_code == 405
