"""
services/booking/router.py
Appointment endpoints: book a slot, query status, cancel with refund.
Slot endpoint: doctors add bookable slots.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.container import ServiceContainer, get_services
from shared.middleware.auth import get_current_user_id
from shared.schemas.schemas import (
    AppointmentStatusResponse,
    BookAppointmentRequest,
    BookingResponse,
    CreateSlotRequest,
    ErrorResponse,
    MessageResponse,
    SlotResponse,
)

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)


# ── Book ──────────────────────────────────────────────────────

@router.post(
    "/book",
    response_model=BookingResponse,
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def book_appointment(
    data: BookAppointmentRequest,
    user_id: int = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve a slot and open a Razorpay order for the consultation fee.
    Client opens checkout with `checkout_options`.
    409 if the slot is already taken.
    """
    reservation = await services.reservations.reserve(db, user_id, data.slot_id)
    return BookingResponse(
        appointment_id=reservation.appointment.id,
        status=reservation.appointment.status.value,
        gateway_order_id=reservation.payment.gateway_order_id,
        amount=reservation.payment.amount,
        currency=reservation.payment.currency,
        checkout_options=reservation.checkout_options,
    )


# ── Status ────────────────────────────────────────────────────

@router.get("/{appointment_id}/status", response_model=AppointmentStatusResponse)
async def appointment_status(
    appointment_id: int,
    user_id: int = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    return await services.settlement.get_status(db, appointment_id, requester_id=user_id)


# ── Cancel ────────────────────────────────────────────────────

@router.put("/{appointment_id}/cancel", response_model=MessageResponse)
async def cancel_appointment(
    appointment_id: int,
    user_id: int = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a confirmed appointment. The full fee is refunded before the slot is released."""
    await services.settlement.cancel(db, appointment_id, requester_id=user_id)
    return MessageResponse(message="Appointment cancelled. Refund initiated.")


# ── Slots ─────────────────────────────────────────────────────

slot_router = APIRouter(
    prefix="/slots",
    tags=["Slots"],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


@slot_router.post(
    "",
    response_model=SlotResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_slot(
    data: CreateSlotRequest,
    user_id: int = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """Doctor adds a bookable slot to their own calendar."""
    slot = await services.slots.create_slot(
        db, user_id, data.slot_date, data.start_time, data.end_time
    )
    return SlotResponse(
        slot_id=slot.id,
        doctor_id=slot.doctor_id,
        slot_date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        booked=slot.booked,
    )
