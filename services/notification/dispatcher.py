"""
services/notification/dispatcher.py
Turns confirmed settlements into NotificationEvents on the event log.

Settlement writes each event to the notification_outbox table inside its
own transaction. After commit the event is published here and the row is
stamped; rows left unstamped (publish failed, process died) are picked up
by relay_pending from the Celery beat task.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.event_log import RedisStreamEventLog
from shared.models.models import NotificationOutbox
from shared.schemas.schemas import NotificationEvent

logger = logging.getLogger(__name__)


# Rendering fields carried at the top level of the event; any other key in
# rendering_data travels in extraRenderingData.
RENDERING_FIELDS = (
    "doctor_name",
    "patient_name",
    "appointment_date",
    "appointment_time",
    "consultation_fee",
)


class NotificationDispatcher:
    def __init__(self, event_log: RedisStreamEventLog):
        self.event_log = event_log

    def build_event(
        self,
        appointment_id: int,
        recipient: Optional[str],
        rendering_data: Dict[str, Any],
    ) -> NotificationEvent:
        extra = dict(rendering_data)
        fields = {name: extra.pop(name) for name in RENDERING_FIELDS if name in extra}
        return NotificationEvent(
            appointment_id=str(appointment_id),
            recipient=recipient,
            extra_rendering_data=extra,
            **fields,
        )

    async def publish_event(self, event: NotificationEvent) -> str:
        """Append to the log keyed by appointment id. Returns the stream message id."""
        message_id = await self.event_log.append(event.appointment_id, event.to_wire())
        logger.info(
            f"Published notification {event.event_id} for appointment "
            f"{event.appointment_id} ({message_id})"
        )
        return message_id

    async def publish(
        self,
        appointment_id: int,
        recipient: Optional[str],
        rendering_data: Dict[str, Any],
    ) -> str:
        """Build and publish a fresh event. Returns its event id."""
        event = self.build_event(appointment_id, recipient, rendering_data)
        await self.publish_event(event)
        return event.event_id

    async def publish_committed(self, db: AsyncSession, event: NotificationEvent) -> bool:
        """
        Publish an event whose outbox row is already committed and stamp it.
        Returns False when the log is unreachable; the relay retries later.
        """
        try:
            await self.publish_event(event)
        except RedisError as e:
            logger.error(
                f"Publishing notification {event.event_id} failed, left for outbox relay: {e}"
            )
            return False

        await db.execute(
            update(NotificationOutbox)
            .where(NotificationOutbox.event_id == event.event_id)
            .values(published_at=datetime.now(timezone.utc))
        )
        await db.commit()
        return True

    async def relay_pending(
        self,
        db: AsyncSession,
        grace: timedelta,
        limit: int = 100,
    ) -> int:
        """Publish outbox rows older than `grace` that were never stamped."""
        cutoff = datetime.now(timezone.utc) - grace
        result = await db.execute(
            select(NotificationOutbox.id)
            .where(
                NotificationOutbox.published_at.is_(None),
                NotificationOutbox.created_at < cutoff,
            )
            .order_by(NotificationOutbox.id)
            .limit(limit)
        )
        row_ids = list(result.scalars().all())
        await db.rollback()

        relayed = 0
        for row_id in row_ids:
            result = await db.execute(
                select(NotificationOutbox)
                .where(
                    NotificationOutbox.id == row_id,
                    NotificationOutbox.published_at.is_(None),
                )
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
            if row is None:
                await db.rollback()
                continue
            try:
                await self.publish_event(NotificationEvent.model_validate(row.payload))
            except Exception:
                await db.rollback()
                raise
            row.published_at = datetime.now(timezone.utc)
            await db.commit()
            relayed += 1

        if relayed:
            logger.info(f"Outbox relay published {relayed} pending notification(s)")
        return relayed
