"""
services/payment/router.py
Razorpay callbacks: server-to-server webhook and the checkout redirect.
Both routes go through PaymentSettlementCoordinator.handle_callback.
"""

import json
import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.container import ServiceContainer, get_services
from services.payment.settlement import CallbackOutcome
from shared.exceptions import DomainError, SecurityViolation
from shared.schemas.schemas import PaymentCallbackRequest, WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

WEBHOOK_OUTCOMES = {
    "payment.captured": CallbackOutcome.SUCCESS,
    "payment.failed": CallbackOutcome.FAILURE,
}


# ── Razorpay Webhook ──────────────────────────────────────────

@router.post("/webhook", response_model=WebhookAck, include_in_schema=False)
async def razorpay_webhook(
    request: Request,
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Razorpay webhook handler. Validates the HMAC body signature before
    anything else. Handles: payment.captured, payment.failed.

    Always answers 200 so Razorpay does not start a retry storm; failures
    are logged and reported in the `status` field only.
    """
    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature", "")

    if not services.gateway.verify_webhook_signature(body, signature):
        logger.warning(
            "Rejected webhook with invalid signature",
            extra={"security_event": "invalid_webhook_signature"},
        )
        return WebhookAck(status=SecurityViolation.code)

    event, order_ref, payment_ref = _payment_entity(body)
    outcome = WEBHOOK_OUTCOMES.get(event)
    if outcome is None or not order_ref:
        logger.info(f"Webhook event '{event}' ignored")
        return WebhookAck(status="ignored")

    try:
        result = await services.settlement.handle_callback(
            db, order_ref, payment_ref, signature, outcome, payload=body
        )
    except DomainError as e:
        logger.error(f"Webhook {event} for order {order_ref} not applied: {e.message}")
        return WebhookAck(status=e.code)
    except Exception:
        logger.exception(f"Webhook {event} for order {order_ref} failed")
        return WebhookAck(status="error")

    return WebhookAck(status=result.value)


def _payment_entity(body: bytes) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """(event, order_id, payment_id) from a webhook body; None for anything missing or malformed."""
    try:
        payload = json.loads(body)
    except ValueError:
        return None, None, None
    if not isinstance(payload, dict):
        return None, None, None

    entity = payload
    for key in ("payload", "payment", "entity"):
        entity = entity.get(key) if isinstance(entity, dict) else None
    if not isinstance(entity, dict):
        entity = {}

    event = payload.get("event")
    order_ref = entity.get("order_id")
    payment_ref = entity.get("id")
    return (
        event if isinstance(event, str) else None,
        order_ref if isinstance(order_ref, str) else None,
        payment_ref if isinstance(payment_ref, str) else None,
    )


# ── Checkout Redirect ─────────────────────────────────────────

@router.post("/callback", response_model=WebhookAck)
async def payment_callback(
    data: PaymentCallbackRequest,
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Backup path to the webhook, posted after client checkout.
    A valid checkout signature proves capture. 403 on a bad signature.
    """
    result = await services.settlement.handle_callback(
        db,
        data.razorpay_order_id,
        data.razorpay_payment_id,
        data.razorpay_signature,
        CallbackOutcome.SUCCESS,
    )
    return WebhookAck(status=result.value)
