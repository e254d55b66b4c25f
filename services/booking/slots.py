"""
services/booking/slots.py
Doctors publish bookable slots. Availability search lives elsewhere;
this only creates rows that reservations later lock.
"""

import logging
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import Conflict, InvalidState, NotFound, Unauthorized
from shared.models.models import Doctor, Slot, User, UserRole

logger = logging.getLogger(__name__)


class SlotManager:
    async def create_slot(
        self,
        db: AsyncSession,
        user_id: int,
        slot_date: date,
        start_time: time,
        end_time: time,
    ) -> Slot:
        """
        Add a free slot to the caller's own doctor profile.
        Raises Unauthorized for non-doctors, InvalidState for an empty or
        inverted time range, Conflict if the doctor already has a slot
        starting at that time on that date.
        """
        user = await db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        if user.role != UserRole.DOCTOR:
            logger.warning(
                f"User {user_id} ({user.role.value}) tried to add a slot",
                extra={"security_event": "slot_create_not_doctor"},
            )
            raise Unauthorized("Only doctors can add slots")

        result = await db.execute(select(Doctor).where(Doctor.user_id == user_id))
        doctor = result.scalar_one_or_none()
        if doctor is None:
            raise NotFound("Doctor profile not found")

        if start_time >= end_time:
            raise InvalidState("start_time must be before end_time")

        existing = await db.execute(
            select(Slot.id).where(
                Slot.doctor_id == doctor.id,
                Slot.date == slot_date,
                Slot.start_time == start_time,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise Conflict(f"A slot at {start_time:%H:%M} on {slot_date} already exists")

        slot = Slot(
            doctor_id=doctor.id,
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            booked=False,
        )
        db.add(slot)
        await db.commit()
        logger.info(f"Doctor {doctor.id} added slot {slot.id} on {slot_date} {start_time:%H:%M}")
        return slot
