"""
tasks/payment_tasks.py
Celery tasks for the payment lifecycle:
- Timeout sweep of reservations whose payment never settled

All tasks are idempotent: running twice has no side effect.
"""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from config.database import create_task_engine
from config.settings import settings
from services.payment.sweeper import TimeoutSweeper
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _sweep(threshold: timedelta) -> int:
    engine = create_task_engine()
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    try:
        async with session_factory() as db:
            return await TimeoutSweeper().sweep(db, threshold)
    finally:
        await engine.dispose()


# ── Sweep Tasks ────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def sweep_expired_reservations(self):
    """
    Fail WAITING appointments older than PAYMENT_TIMEOUT_MINUTES and free
    their slots. A late webhook for a swept order finds it FAILED and no-ops.
    """
    threshold = timedelta(minutes=settings.PAYMENT_TIMEOUT_MINUTES)
    try:
        reclaimed = asyncio.run(_sweep(threshold))
    except SQLAlchemyError as exc:
        logger.exception("sweep_expired_reservations failed")
        raise self.retry(exc=exc)
    logger.info(f"sweep_expired_reservations: reclaimed {reclaimed} slot(s)")
    return reclaimed
