"""
services/payment/settlement.py
Payment settlement: gateway callbacks, cancellation with refund, and the
appointment status query.

Callbacks may arrive more than once (webhook + redirect + gateway retries).
Every writer locks the PaymentOrder row and re-checks its state before
mutating, so a duplicate observes a terminal state and becomes a no-op.
"""

import logging
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.gateway.client import RazorpayGatewayClient
from services.notification.dispatcher import NotificationDispatcher
from services.payment.state_machine import (
    Transition,
    apply_transition,
    can_apply,
    load_appointment,
    lock_payment_order,
    release_slot,
)
from shared.exceptions import InvalidState, NotFound, SecurityViolation, Unauthorized
from shared.models.models import (
    Appointment,
    Doctor,
    NotificationOutbox,
    PaymentOrder,
    PaymentStatus,
    Slot,
    User,
)
from shared.schemas.schemas import AppointmentStatusResponse, NotificationEvent

logger = logging.getLogger(__name__)


class CallbackOutcome(str, PyEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class CallbackResult(str, PyEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


class PaymentSettlementCoordinator:
    def __init__(self, gateway: RazorpayGatewayClient, dispatcher: NotificationDispatcher):
        self.gateway = gateway
        self.dispatcher = dispatcher

    # ── Callbacks ─────────────────────────────────────────────

    async def handle_callback(
        self,
        db: AsyncSession,
        order_ref: str,
        payment_ref: str,
        signature: str,
        outcome: CallbackOutcome,
        payload: Optional[bytes] = None,
    ) -> CallbackResult:
        """
        Apply a gateway outcome to the order identified by `order_ref`.

        With `payload` the signature is checked as a webhook signature over
        the raw body; otherwise as a checkout signature over order|payment.
        """
        if payload is not None:
            valid = self.gateway.verify_webhook_signature(payload, signature)
        else:
            valid = self.gateway.verify_payment_signature(order_ref, payment_ref, signature)
        if not valid:
            logger.warning(
                f"Rejected gateway callback with invalid signature: order={order_ref} "
                f"payment={payment_ref}",
                extra={"security_event": "invalid_gateway_signature"},
            )
            raise SecurityViolation("Invalid payment signature")

        event: Optional[NotificationEvent] = None
        try:
            payment = await lock_payment_order(db, gateway_order_id=order_ref)
            if payment is None:
                raise NotFound(f"No payment order for gateway order {order_ref}")

            if payment.status != PaymentStatus.PENDING:
                logger.info(
                    f"Duplicate callback for order {order_ref} ignored "
                    f"(payment already {payment.status.value})"
                )
                await db.rollback()
                return CallbackResult.DUPLICATE

            appointment = await load_appointment(db, payment.appointment_id)
            payment.gateway_payment_id = payment_ref

            if outcome == CallbackOutcome.SUCCESS:
                payment.paid_at = datetime.now(timezone.utc)
                apply_transition(
                    db, appointment, payment, Transition.SUCCESS,
                    actor="gateway", metadata={"gateway_payment_id": payment_ref},
                )
                event = await self._build_confirmation(db, appointment, payment)
                db.add(NotificationOutbox(
                    event_id=event.event_id,
                    appointment_id=appointment.id,
                    payload=event.to_payload(),
                ))
            else:
                apply_transition(
                    db, appointment, payment, Transition.FAILURE,
                    actor="gateway", reason="Payment failed at gateway",
                    metadata={"gateway_payment_id": payment_ref},
                )
                await release_slot(db, appointment.slot_id)

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"Order {order_ref} settled as {outcome.value}: appointment {appointment.id} "
            f"is {appointment.status.value}"
        )
        if event is not None:
            await self.dispatcher.publish_committed(db, event)
        return CallbackResult.APPLIED

    async def _build_confirmation(
        self, db: AsyncSession, appointment: Appointment, payment: PaymentOrder
    ) -> NotificationEvent:
        # Foreign keys guarantee every row below exists
        slot = await db.get(Slot, appointment.slot_id)
        doctor = await db.get(Doctor, slot.doctor_id)
        doctor_user = await db.get(User, doctor.user_id)
        patient = await db.get(User, appointment.patient_id)
        return self.dispatcher.build_event(
            appointment_id=appointment.id,
            recipient=doctor_user.email,
            rendering_data={
                "doctor_name": doctor_user.name,
                "patient_name": patient.name,
                "appointment_date": slot.date,
                "appointment_time": slot.start_time,
                "consultation_fee": payment.amount,
                "currency": payment.currency,
                "speciality": doctor.speciality,
            },
        )

    # ── Cancellation ──────────────────────────────────────────

    async def cancel(self, db: AsyncSession, appointment_id: int, requester_id: int) -> Appointment:
        """
        Owner-initiated cancellation of a CONFIRMED appointment.
        The recorded amount is refunded first; state only moves once the
        gateway has accepted the refund.
        """
        try:
            appointment = await db.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFound(f"Appointment {appointment_id} not found")
            if appointment.patient_id != requester_id:
                logger.warning(
                    f"User {requester_id} tried to cancel appointment {appointment_id}",
                    extra={"security_event": "cancel_not_owner"},
                )
                raise Unauthorized("Only the patient who booked can cancel this appointment")

            payment = await lock_payment_order(db, appointment_id=appointment_id)
            if payment is None:
                raise NotFound(f"Payment for appointment {appointment_id} not found")
            appointment = await load_appointment(db, appointment_id)

            if not can_apply(appointment, payment, Transition.CANCEL):
                raise InvalidState(
                    f"Only confirmed appointments can be cancelled "
                    f"(current: {appointment.status.value})"
                )

            refund_id = await self.gateway.refund(payment.gateway_payment_id, payment.amount)

            payment.refund_id = refund_id
            payment.refunded_at = datetime.now(timezone.utc)
            apply_transition(
                db, appointment, payment, Transition.CANCEL,
                actor=f"patient:{requester_id}", reason="Cancelled by patient",
                metadata={"refund_id": refund_id},
            )
            await release_slot(db, appointment.slot_id)
            try:
                await db.commit()
            except Exception:
                logger.critical(
                    f"Refund {refund_id} issued but cancellation of appointment "
                    f"{appointment_id} failed to commit",
                    exc_info=True,
                )
                raise
        except Exception:
            await db.rollback()
            raise

        logger.info(f"Appointment {appointment_id} cancelled, refund {refund_id}")
        return appointment

    # ── Queries ───────────────────────────────────────────────

    async def get_status(
        self,
        db: AsyncSession,
        appointment_id: int,
        requester_id: Optional[int] = None,
    ) -> AppointmentStatusResponse:
        """Lock-free status read. A given requester must be the patient or the doctor."""
        appointment = await db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        slot = await db.get(Slot, appointment.slot_id)
        doctor = await db.get(Doctor, slot.doctor_id)
        doctor_user = await db.get(User, doctor.user_id)

        if requester_id is not None and requester_id not in (appointment.patient_id, doctor.user_id):
            raise Unauthorized("Not allowed to view this appointment")

        result = await db.execute(
            select(PaymentOrder).where(PaymentOrder.appointment_id == appointment_id)
        )
        payment = result.scalar_one_or_none()

        return AppointmentStatusResponse(
            appointment_id=appointment.id,
            status=appointment.status.value,
            payment_status=payment.status.value if payment else None,
            amount=payment.amount if payment else None,
            doctor_name=doctor_user.name,
            appointment_date=slot.date,
            appointment_time=slot.start_time,
        )
