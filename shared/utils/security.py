"""
shared/utils/security.py
JWT verification and Razorpay HMAC signature helpers.
"""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(user_id: int, role: str, extra: Optional[dict] = None) -> str:
    """
    Create a signed JWT access token.
    Token issuance belongs to the identity service; this exists for tooling and tests.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
        **(extra or {}),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.
    Raises JWTError on invalid/expired token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload


# ── Razorpay Signatures ───────────────────────────────────────

def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_razorpay_signature(
    order_id: str,
    payment_id: str,
    signature: str,
    key_secret: str,
) -> bool:
    """Checkout signature: HMAC-SHA256 of "order_id|payment_id" with the key secret."""
    if not signature:
        return False
    expected = hmac_sha256_hex(key_secret, f"{order_id}|{payment_id}".encode())
    return hmac.compare_digest(expected, signature)


def verify_razorpay_webhook_signature(
    payload_body: bytes,
    signature: str,
    webhook_secret: str,
) -> bool:
    """Webhook signature: HMAC-SHA256 of the raw request body with the webhook secret."""
    if not signature:
        return False
    expected = hmac_sha256_hex(webhook_secret, payload_body)
    return hmac.compare_digest(expected, signature)
