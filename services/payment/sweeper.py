"""
services/payment/sweeper.py
Reclaims slots held by reservations whose payment never settled.

Each stale appointment is handled in its own short transaction with the
same lock order as the callback path, so a late webhook and the sweep
cannot both apply: whichever locks the PaymentOrder first wins.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.payment.state_machine import (
    Transition,
    apply_transition,
    load_appointment,
    lock_payment_order,
    release_slot,
)
from shared.models.models import Appointment, AppointmentStatus, PaymentStatus

logger = logging.getLogger(__name__)


class TimeoutSweeper:
    async def sweep(
        self,
        db: AsyncSession,
        threshold: timedelta,
        now: Optional[datetime] = None,
    ) -> int:
        """Fail every WAITING appointment older than `threshold`. Returns how many were reclaimed."""
        cutoff = (now or datetime.now(timezone.utc)) - threshold
        result = await db.execute(
            select(Appointment.id)
            .where(
                Appointment.status == AppointmentStatus.WAITING,
                Appointment.created_at < cutoff,
            )
            .order_by(Appointment.id)
        )
        candidates = list(result.scalars().all())
        await db.rollback()

        reclaimed = 0
        for appointment_id in candidates:
            try:
                if await self._expire(db, appointment_id, threshold):
                    reclaimed += 1
            except SQLAlchemyError:
                await db.rollback()
                logger.exception(f"Sweep of appointment {appointment_id} failed, will retry next run")

        if candidates:
            logger.info(f"Timeout sweep: {reclaimed}/{len(candidates)} stale reservations reclaimed")
        return reclaimed

    async def _expire(self, db: AsyncSession, appointment_id: int, threshold: timedelta) -> bool:
        payment = await lock_payment_order(db, appointment_id=appointment_id)
        if payment is None or payment.status != PaymentStatus.PENDING:
            # Settled between the scan and the lock
            await db.rollback()
            return False

        appointment = await load_appointment(db, appointment_id)
        if appointment.status != AppointmentStatus.WAITING:
            await db.rollback()
            return False

        apply_transition(
            db, appointment, payment, Transition.TIMEOUT,
            actor="sweeper",
            reason=f"No payment outcome within {int(threshold.total_seconds() // 60)} minutes",
        )
        await release_slot(db, appointment.slot_id)
        await db.commit()
        logger.info(f"Appointment {appointment_id} timed out, slot {appointment.slot_id} released")
        return True
