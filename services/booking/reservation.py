"""
services/booking/reservation.py
Slot reservation under contention.

The slot row stays locked (SELECT ... FOR UPDATE) from the availability
check until the appointment, the gateway order and the payment record
are committed together. Concurrent reservations for one slot queue on
that lock; the first wins and the rest see booked=True.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.gateway.client import RazorpayGatewayClient
from shared.exceptions import Conflict, NotFound
from shared.models.models import (
    Appointment,
    AppointmentAuditLog,
    AppointmentStatus,
    Doctor,
    PaymentOrder,
    PaymentStatus,
    Slot,
    User,
)

logger = logging.getLogger(__name__)


@dataclass
class Reservation:
    appointment: Appointment
    payment: PaymentOrder
    checkout_options: dict


class SlotReservationManager:
    def __init__(self, gateway: RazorpayGatewayClient):
        self.gateway = gateway

    async def reserve(self, db: AsyncSession, patient_id: int, slot_id: int) -> Reservation:
        """
        Hold `slot_id` for `patient_id` and open a gateway order for the
        doctor's consultation fee.

        Raises NotFound, Conflict("Slot already booked") or GatewayError.
        Any failure rolls the whole unit back: no appointment row remains
        and the slot stays free.
        """
        try:
            result = await db.execute(
                select(Slot)
                .where(Slot.id == slot_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            slot = result.scalar_one_or_none()
            if slot is None:
                raise NotFound(f"Slot {slot_id} not found")
            if slot.booked:
                raise Conflict("Slot already booked")

            patient = await db.get(User, patient_id)
            if patient is None:
                raise NotFound(f"Patient {patient_id} not found")
            doctor = await db.get(Doctor, slot.doctor_id)
            if doctor is None:
                raise NotFound(f"Doctor {slot.doctor_id} not found")

            appointment = Appointment(
                patient_id=patient_id,
                slot_id=slot.id,
                status=AppointmentStatus.WAITING,
            )
            db.add(appointment)
            slot.booked = True
            await db.flush()

            order = await self.gateway.create_order(
                doctor.consultation_fee,
                receipt=f"appointment_{appointment.id}",
                notes={"appointment_id": str(appointment.id), "slot_id": str(slot.id)},
            )

            payment = PaymentOrder(
                appointment_id=appointment.id,
                amount=doctor.consultation_fee,
                currency=self.gateway.currency,
                gateway_order_id=order["id"],
                status=PaymentStatus.PENDING,
            )
            db.add(payment)
            db.add(AppointmentAuditLog(
                appointment_id=appointment.id,
                from_status=None,
                to_status=AppointmentStatus.WAITING.value,
                actor=f"patient:{patient_id}",
                audit_metadata={"gateway_order_id": order["id"]},
            ))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"Slot {slot_id} reserved: appointment {appointment.id}, "
            f"order {payment.gateway_order_id}"
        )
        return Reservation(
            appointment=appointment,
            payment=payment,
            checkout_options=self.gateway.checkout_options(
                payment.gateway_order_id, payment.amount, patient.email
            ),
        )
