"""
tests/test_cancellation.py
Owner cancellation with full refund of the recorded amount.
"""

import pytest

from services.booking.reservation import SlotReservationManager
from services.payment.settlement import CallbackOutcome
from shared.exceptions import GatewayError, InvalidState, NotFound, Unauthorized
from shared.models.models import (
    Appointment,
    AppointmentStatus,
    PaymentOrder,
    PaymentStatus,
    Slot,
)


async def _confirmed(db, services, patient, slot, sign_checkout):
    reservation = await SlotReservationManager(services.gateway).reserve(db, patient.id, slot.id)
    order_id = reservation.payment.gateway_order_id
    await services.settlement.handle_callback(
        db, order_id, "pay_1", sign_checkout(order_id, "pay_1"), CallbackOutcome.SUCCESS
    )
    return reservation


@pytest.mark.asyncio
async def test_cancel_refunds_exact_amount_and_frees_slot(
    db, services, razorpay_sdk, patient, slot, sign_checkout, reload
):
    reservation = await _confirmed(db, services, patient, slot, sign_checkout)

    await services.settlement.cancel(db, reservation.appointment.id, requester_id=patient.id)

    razorpay_sdk.payment.refund.assert_called_once_with("pay_1", {"amount": 50000})
    payment = await reload(PaymentOrder, reservation.payment.id)
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.refund_id == "rfnd_pay_1"
    assert payment.refunded_at is not None
    assert (await reload(Appointment, reservation.appointment.id)).status == AppointmentStatus.CANCELLED
    assert (await reload(Slot, slot.id)).booked is False


@pytest.mark.asyncio
async def test_refund_failure_keeps_appointment_confirmed(
    db, services, razorpay_sdk, patient, slot, sign_checkout, reload
):
    reservation = await _confirmed(db, services, patient, slot, sign_checkout)
    razorpay_sdk.payment.refund.side_effect = RuntimeError("refund rejected")

    with pytest.raises(GatewayError):
        await services.settlement.cancel(db, reservation.appointment.id, requester_id=patient.id)

    assert (await reload(PaymentOrder, reservation.payment.id)).status == PaymentStatus.SUCCESS
    assert (await reload(Appointment, reservation.appointment.id)).status == AppointmentStatus.CONFIRMED
    assert (await reload(Slot, slot.id)).booked is True


@pytest.mark.asyncio
async def test_cancel_by_other_user_unauthorized(
    db, services, razorpay_sdk, patient, other_patient, slot, sign_checkout
):
    reservation = await _confirmed(db, services, patient, slot, sign_checkout)

    with pytest.raises(Unauthorized):
        await services.settlement.cancel(db, reservation.appointment.id, requester_id=other_patient.id)

    razorpay_sdk.payment.refund.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_waiting_appointment_invalid_state(db, services, razorpay_sdk, patient, slot):
    reservation = await SlotReservationManager(services.gateway).reserve(db, patient.id, slot.id)

    with pytest.raises(InvalidState):
        await services.settlement.cancel(db, reservation.appointment.id, requester_id=patient.id)

    razorpay_sdk.payment.refund.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_twice_refunds_once(db, services, razorpay_sdk, patient, slot, sign_checkout):
    reservation = await _confirmed(db, services, patient, slot, sign_checkout)
    await services.settlement.cancel(db, reservation.appointment.id, requester_id=patient.id)

    with pytest.raises(InvalidState):
        await services.settlement.cancel(db, reservation.appointment.id, requester_id=patient.id)

    assert razorpay_sdk.payment.refund.call_count == 1


@pytest.mark.asyncio
async def test_cancel_unknown_appointment_not_found(db, services, patient):
    with pytest.raises(NotFound):
        await services.settlement.cancel(db, 9999, requester_id=patient.id)
