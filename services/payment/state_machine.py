"""
services/payment/state_machine.py
Appointment/payment transition table and the row-locking helpers every
writer shares.

    WAITING/PENDING   --success-->  CONFIRMED/SUCCESS
    WAITING/PENDING   --failure-->  FAILED/FAILED        (slot freed)
    WAITING/PENDING   --timeout-->  FAILED/FAILED        (slot freed)
    CONFIRMED/SUCCESS --cancel--->  CANCELLED/REFUNDED   (slot freed)

Lock order for any writer touching both rows: PaymentOrder, then Slot.
"""

from enum import Enum as PyEnum
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import InvalidState, NotFound
from shared.models.models import (
    Appointment,
    AppointmentAuditLog,
    AppointmentStatus,
    PaymentOrder,
    PaymentStatus,
    Slot,
)


class Transition(str, PyEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCEL = "cancel"


_TRANSITIONS = {
    (AppointmentStatus.WAITING, PaymentStatus.PENDING): {
        Transition.SUCCESS: (AppointmentStatus.CONFIRMED, PaymentStatus.SUCCESS),
        Transition.FAILURE: (AppointmentStatus.FAILED, PaymentStatus.FAILED),
        Transition.TIMEOUT: (AppointmentStatus.FAILED, PaymentStatus.FAILED),
    },
    (AppointmentStatus.CONFIRMED, PaymentStatus.SUCCESS): {
        Transition.CANCEL: (AppointmentStatus.CANCELLED, PaymentStatus.REFUNDED),
    },
}


def next_states(
    appointment_status: AppointmentStatus,
    payment_status: PaymentStatus,
    transition: Transition,
) -> Optional[Tuple[AppointmentStatus, PaymentStatus]]:
    return _TRANSITIONS.get((appointment_status, payment_status), {}).get(transition)


def can_apply(appointment: Appointment, payment: PaymentOrder, transition: Transition) -> bool:
    return next_states(appointment.status, payment.status, transition) is not None


def apply_transition(
    db: AsyncSession,
    appointment: Appointment,
    payment: PaymentOrder,
    transition: Transition,
    actor: str,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Move both records to their target states and write the audit row."""
    target = next_states(appointment.status, payment.status, transition)
    if target is None:
        raise InvalidState(
            f"Cannot apply '{transition.value}' to appointment in "
            f"{appointment.status.value}/{payment.status.value}"
        )
    from_status = appointment.status
    appointment.status, payment.status = target
    db.add(AppointmentAuditLog(
        appointment_id=appointment.id,
        from_status=from_status.value,
        to_status=appointment.status.value,
        actor=actor,
        reason=reason,
        audit_metadata=metadata,
    ))


# ── Locking helpers ───────────────────────────────────────────

async def lock_payment_order(
    db: AsyncSession,
    *,
    gateway_order_id: Optional[str] = None,
    appointment_id: Optional[int] = None,
) -> Optional[PaymentOrder]:
    """SELECT ... FOR UPDATE on one PaymentOrder, refreshing any cached copy."""
    stmt = select(PaymentOrder).with_for_update().execution_options(populate_existing=True)
    if gateway_order_id is not None:
        stmt = stmt.where(PaymentOrder.gateway_order_id == gateway_order_id)
    elif appointment_id is not None:
        stmt = stmt.where(PaymentOrder.appointment_id == appointment_id)
    else:
        raise ValueError("gateway_order_id or appointment_id is required")
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def load_appointment(db: AsyncSession, appointment_id: int) -> Appointment:
    """Fresh read of an appointment; call after its PaymentOrder is locked."""
    result = await db.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .execution_options(populate_existing=True)
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise NotFound(f"Appointment {appointment_id} not found")
    return appointment


async def release_slot(db: AsyncSession, slot_id: int) -> None:
    result = await db.execute(
        select(Slot)
        .where(Slot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    slot = result.scalar_one_or_none()
    if slot is None:
        raise NotFound(f"Slot {slot_id} not found")
    slot.booked = False
