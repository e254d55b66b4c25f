"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.signals import setup_logging

from config.log_config import configure_logging
from config.settings import settings

celery_app = Celery(
    "doctor_booking",
    broker=settings.CELERY_BROKER_URL,
    include=[
        "tasks.notification_tasks",
        "tasks.payment_tasks",
    ],
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    timezone="Asia/Kolkata",
    enable_utc=True,

    # Reliability: acknowledge task AFTER execution, not before
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Periodic jobs report through logs, not results
    task_ignore_result=True,

    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
        "tasks.payment_tasks.*": {"queue": "payments"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Fail WAITING appointments whose payment never settled and free their slots
    "sweep-expired-reservations": {
        "task": "tasks.payment_tasks.sweep_expired_reservations",
        "schedule": settings.SWEEP_INTERVAL_SECONDS,
    },

    # Republish confirmation events that were committed but never published
    "relay-notification-outbox": {
        "task": "tasks.notification_tasks.relay_notification_outbox",
        "schedule": settings.OUTBOX_RELAY_INTERVAL_SECONDS,
    },
}
