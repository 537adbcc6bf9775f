"""
Tests for webhook signature verification.
"""

import hashlib
import hmac

import pytest

from billing.exceptions import InvalidSignature
from billing.webhooks import verifier

BODY = b'{"type":"order.created","data":{"id":"ord_1"}}'
SECRET = "whsec_unit"


def digest(body=BODY, secret=SECRET):
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerify:
    def test_accepts_hex_digest(self):
        verifier.verify(BODY, digest(), secret=SECRET)

    def test_accepts_prefixed_and_uppercase_digest(self):
        verifier.verify(BODY, f"sha256={digest().upper()}", secret=SECRET)

    def test_sign_matches_hmac(self):
        assert verifier.sign(BODY, secret=SECRET) == digest()

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature(self, signature):
        with pytest.raises(InvalidSignature, match="Missing"):
            verifier.verify(BODY, signature, secret=SECRET)

    def test_tampered_body(self):
        with pytest.raises(InvalidSignature, match="mismatch"):
            verifier.verify(BODY + b" ", digest(), secret=SECRET)

    def test_wrong_secret(self):
        with pytest.raises(InvalidSignature):
            verifier.verify(BODY, digest(secret="other"), secret=SECRET)

    def test_non_ascii_signature_is_rejected_not_crashing(self):
        with pytest.raises(InvalidSignature):
            verifier.verify(BODY, "sïgnature", secret=SECRET)

    def test_unconfigured_secret_rejects_everything(self, settings):
        settings.POLAR_WEBHOOK_SECRET = ""
        with pytest.raises(InvalidSignature, match="not configured"):
            verifier.verify(BODY, digest())

    def test_uses_settings_secret_by_default(self, settings):
        settings.POLAR_WEBHOOK_SECRET = SECRET
        verifier.verify(BODY, digest())
