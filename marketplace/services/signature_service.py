"""
HMAC-SHA256 signatures for gateway callbacks.

Webhook pushes are signed over the exact raw request body; client-side
checkout confirmations are signed over "<order id>|<payment id>".
"""
import hashlib
import hmac


def compute_signature(secret: str, message: bytes | str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    """Constant-time comparison; a length mismatch is simply a mismatch."""
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


def verify_webhook_signature(secret: str, raw_body: bytes, signature: str | None) -> bool:
    return signatures_match(compute_signature(secret, raw_body), signature)


def verify_checkout_signature(secret: str, order_id: str, payment_id: str, signature: str | None) -> bool:
    return signatures_match(compute_signature(secret, f"{order_id}|{payment_id}"), signature)
