"""
services/gateway/client.py
Razorpay gateway client: order creation, checkout options, payment lookup,
refunds, and signature verification.

The SDK is blocking, so every network call runs in a worker thread behind
a timeout and a circuit breaker. Any failure surfaces as GatewayError.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Optional

import razorpay
from pybreaker import CircuitBreaker, CircuitBreakerError

from config.settings import Settings
from shared.exceptions import GatewayError
from shared.utils.resilience import circuit_breaker_manager
from shared.utils.security import (
    verify_razorpay_signature,
    verify_razorpay_webhook_signature,
)

logger = logging.getLogger(__name__)


def to_paise(amount: Decimal) -> int:
    """Razorpay amounts are integers in the smallest currency unit."""
    return int((Decimal(amount) * 100).to_integral_value())


class RazorpayGatewayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        currency: str = "INR",
        callback_url: str = "",
        timeout_seconds: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
        client: Optional[Any] = None,
    ):
        self.key_id = key_id
        self.currency = currency
        self.callback_url = callback_url
        self.timeout_seconds = timeout_seconds
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._client = client or razorpay.Client(auth=(key_id, key_secret))
        self._breaker = breaker or circuit_breaker_manager.get_breaker("razorpay")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayGatewayClient":
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            currency=settings.GATEWAY_CURRENCY,
            callback_url=settings.RAZORPAY_CALLBACK_URL,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
        )

    # ── Transport ─────────────────────────────────────────────

    async def _call(self, operation: str, func: Callable, *args) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._breaker.call, func, *args),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Razorpay {operation} timed out after {self.timeout_seconds}s")
            raise GatewayError(f"Payment gateway timed out during {operation}") from e
        except CircuitBreakerError as e:
            logger.error(f"Razorpay {operation} rejected, circuit open: {e}")
            raise GatewayError("Payment gateway temporarily unavailable") from e
        except Exception as e:
            logger.error(f"Razorpay {operation} failed: {e}")
            raise GatewayError(f"Payment gateway error during {operation}: {e}") from e

    # ── Orders ────────────────────────────────────────────────

    async def create_order(self, amount: Decimal, receipt: str, notes: Optional[dict] = None) -> dict:
        """Create a gateway order for `amount` (major units). Returns the gateway's order dict."""
        order = await self._call(
            "order creation",
            self._client.order.create,
            {
                "amount": to_paise(amount),
                "currency": self.currency,
                "receipt": receipt,
                "notes": notes or {},
            },
        )
        if not isinstance(order, dict) or not order.get("id"):
            raise GatewayError("Payment gateway returned a malformed order")
        logger.info(f"Razorpay order created: {order['id']} ({receipt})")
        return order

    def checkout_options(self, order_id: str, amount: Decimal, email: Optional[str] = None) -> dict:
        """Payload for the Razorpay checkout SDK on the client."""
        return {
            "key": self.key_id,
            "amount": to_paise(amount),
            "currency": self.currency,
            "order_id": order_id,
            "prefill": {"email": email or ""},
            "callback_url": self.callback_url,
        }

    # ── Payments ──────────────────────────────────────────────

    async def fetch_payment(self, payment_id: str) -> dict:
        payment = await self._call("payment fetch", self._client.payment.fetch, payment_id)
        return {
            "id": payment.get("id"),
            "order_id": payment.get("order_id"),
            "amount": payment.get("amount"),
            "status": payment.get("status"),
            "method": payment.get("method"),
            "email": payment.get("email"),
            "contact": payment.get("contact"),
        }

    async def refund(self, payment_id: str, amount: Decimal) -> str:
        """Full refund of `amount`. Returns the gateway refund id."""
        refund = await self._call(
            "refund",
            self._client.payment.refund,
            payment_id,
            {"amount": to_paise(amount)},
        )
        if not isinstance(refund, dict) or not refund.get("id"):
            raise GatewayError("Payment gateway returned a malformed refund")
        logger.info(f"Razorpay refund {refund['id']} issued for payment {payment_id}")
        return refund["id"]

    # ── Signatures ────────────────────────────────────────────

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            logger.error("RAZORPAY_KEY_SECRET not configured; rejecting checkout signature")
            return False
        return verify_razorpay_signature(order_id, payment_id, signature, self._key_secret)

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        if not self._webhook_secret:
            logger.error("RAZORPAY_WEBHOOK_SECRET not configured; rejecting webhook")
            return False
        return verify_razorpay_webhook_signature(body, signature, self._webhook_secret)
