"""
services/container.py
Explicit construction of the service graph. Built once in the app
lifespan (or by a worker) and handed to routes via app.state.
"""

from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import Request

from config.settings import Settings
from services.booking.reservation import SlotReservationManager
from services.booking.slots import SlotManager
from services.gateway.client import RazorpayGatewayClient
from services.notification.dispatcher import NotificationDispatcher
from services.notification.event_log import RedisStreamEventLog
from services.payment.settlement import PaymentSettlementCoordinator
from services.payment.sweeper import TimeoutSweeper


@dataclass
class ServiceContainer:
    gateway: RazorpayGatewayClient
    dispatcher: NotificationDispatcher
    slots: SlotManager
    reservations: SlotReservationManager
    settlement: PaymentSettlementCoordinator
    sweeper: TimeoutSweeper

    @classmethod
    def build(
        cls,
        gateway: RazorpayGatewayClient,
        event_log: RedisStreamEventLog,
    ) -> "ServiceContainer":
        dispatcher = NotificationDispatcher(event_log)
        return cls(
            gateway=gateway,
            dispatcher=dispatcher,
            slots=SlotManager(),
            reservations=SlotReservationManager(gateway),
            settlement=PaymentSettlementCoordinator(gateway, dispatcher),
            sweeper=TimeoutSweeper(),
        )

    @classmethod
    def from_settings(cls, settings: Settings, redis: aioredis.Redis) -> "ServiceContainer":
        return cls.build(
            gateway=RazorpayGatewayClient.from_settings(settings),
            event_log=build_event_log(settings, redis),
        )


def build_event_log(settings: Settings, redis: aioredis.Redis) -> RedisStreamEventLog:
    return RedisStreamEventLog(
        redis,
        topic=settings.NOTIFICATION_TOPIC,
        partitions=settings.NOTIFICATION_PARTITIONS,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency: the container built at startup."""
    return request.app.state.services
