"""
tests/test_scenario.py
One slot, two patients, one payment: the whole booking lifecycle end to end.
"""

import json
from datetime import date, time

import pytest
from sqlalchemy import func, select

from services.payment.settlement import CallbackOutcome, CallbackResult
from shared.exceptions import Conflict
from shared.models.models import (
    Appointment,
    AppointmentStatus,
    NotificationOutbox,
    PaymentOrder,
    PaymentStatus,
    Slot,
)


@pytest.mark.asyncio
async def test_booking_lifecycle(
    db, session_factory, services, patient, other_patient, doctor, sign_checkout, reload, published
):
    db.add(Slot(id=42, doctor_id=doctor.id, date=date(2026, 11, 3),
                start_time=time(10, 30), end_time=time(11, 0)))
    await db.commit()

    async with session_factory() as session_a:
        first = await services.reservations.reserve(session_a, patient.id, 42)
    async with session_factory() as session_b:
        with pytest.raises(Conflict):
            await services.reservations.reserve(session_b, other_patient.id, 42)

    assert first.appointment.id == 1
    assert first.appointment.status == AppointmentStatus.WAITING
    assert first.checkout_options["amount"] == 50000

    order_id = first.payment.gateway_order_id
    signature = sign_checkout(order_id, "pay_1")
    async with session_factory() as session:
        applied = await services.settlement.handle_callback(
            session, order_id, "pay_1", signature, CallbackOutcome.SUCCESS
        )
    async with session_factory() as session:
        replayed = await services.settlement.handle_callback(
            session, order_id, "pay_1", signature, CallbackOutcome.SUCCESS
        )

    assert applied == CallbackResult.APPLIED
    assert replayed == CallbackResult.DUPLICATE
    assert (await reload(Appointment, 1)).status == AppointmentStatus.CONFIRMED
    assert (await reload(PaymentOrder, first.payment.id)).status == PaymentStatus.SUCCESS
    assert (await reload(Slot, 42)).booked is True

    records = await published()
    assert len(records) == 1
    event = json.loads(records[0][1]["value"])
    assert event["appointmentId"] == "1"
    assert event["recipient"] == "dr.mehta@example.com"
    assert event["doctorName"] == "Kavita Mehta"
    assert event["consultationFee"] == "500.00"

    async with session_factory() as session:
        outbox_rows = await session.scalar(select(func.count()).select_from(NotificationOutbox))
        active = await session.scalar(
            select(func.count()).select_from(Appointment).where(Appointment.slot_id == 42)
        )
    assert outbox_rows == 1
    assert active == 1
