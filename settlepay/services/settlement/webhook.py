"""Paystack webhook signature checks and event routing."""

import hashlib
import hmac

from settlepay.services.settlement.reconciler import FAILED, SUCCESS

SIGNATURE_HEADER = "x-paystack-signature"

# Webhook events that carry a settlement outcome; everything else is acked.
CHARGE_EVENTS: dict[str, str] = {
    "charge.success": SUCCESS,
    "charge.failed": FAILED,
}


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA-512 of the exact request bytes, as Paystack computes it."""

    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    expected = sign_payload(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))
