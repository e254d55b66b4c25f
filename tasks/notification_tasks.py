"""
tasks/notification_tasks.py
Celery tasks for notification publishing.

relay_notification_outbox picks up confirmation events that were committed
with their settlement but never reached the event log (publish failed or
the process died in between). Safe to run twice: consumers tolerate
duplicates and each row is stamped once published.
"""

import asyncio
import logging
from datetime import timedelta

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from config.database import create_task_engine
from config.redis_client import create_redis
from config.settings import settings
from services.container import build_event_log
from services.notification.dispatcher import NotificationDispatcher
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _relay(grace: timedelta) -> int:
    engine = create_task_engine()
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    redis = create_redis()
    try:
        dispatcher = NotificationDispatcher(build_event_log(settings, redis))
        async with session_factory() as db:
            return await dispatcher.relay_pending(db, grace)
    finally:
        await redis.aclose()
        await engine.dispose()


@celery_app.task(bind=True, max_retries=5, default_retry_delay=30)
def relay_notification_outbox(self):
    grace = timedelta(seconds=settings.OUTBOX_RELAY_GRACE_SECONDS)
    try:
        relayed = asyncio.run(_relay(grace))
    except (RedisError, SQLAlchemyError) as exc:
        logger.exception("relay_notification_outbox failed")
        raise self.retry(exc=exc)
    return relayed
