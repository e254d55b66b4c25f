"""
tests/conftest.py
Shared fixtures: a file-backed SQLite database per test, seeded people and
slots, a Razorpay client over a mocked SDK, a fakeredis event log, and an
HTTP client bound to the FastAPI app.

SQLite ignores SELECT ... FOR UPDATE, so every transaction is opened with
BEGIN IMMEDIATE: writers queue on the database lock the same way they
queue on row locks in PostgreSQL.
"""

import hashlib
import hmac
import itertools
import os
import tempfile
from datetime import date, time
from decimal import Decimal
from unittest.mock import MagicMock

os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'doctor_booking_bootstrap.db')}",
)

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pybreaker import CircuitBreaker
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from config.database import Base, get_db
from services.container import ServiceContainer
from services.gateway.client import RazorpayGatewayClient
from services.notification.event_log import RedisStreamEventLog
from shared.models.models import Doctor, Slot, User, UserRole
from shared.utils.security import create_access_token

KEY_SECRET = "rzp_test_key_secret"
WEBHOOK_SECRET = "rzp_test_webhook_secret"
TOPIC = "appointment_notifications"


# ── Database ───────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def reload(session_factory):
    """Read a row through a fresh session so no cached state leaks into assertions."""
    async def _reload(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)
    return _reload


# ── Seed data ──────────────────────────────────────────────────────────────────

async def _add(db, obj):
    db.add(obj)
    await db.commit()
    return obj


@pytest_asyncio.fixture
async def patient(db) -> User:
    return await _add(db, User(email="asha@example.com", name="Asha Rao", role=UserRole.PATIENT))


@pytest_asyncio.fixture
async def other_patient(db) -> User:
    return await _add(db, User(email="bilal@example.com", name="Bilal Khan", role=UserRole.PATIENT))


@pytest_asyncio.fixture
async def doctor_user(db) -> User:
    return await _add(db, User(email="dr.mehta@example.com", name="Kavita Mehta", role=UserRole.DOCTOR))


@pytest_asyncio.fixture
async def doctor(db, doctor_user) -> Doctor:
    return await _add(db, Doctor(
        user_id=doctor_user.id,
        speciality="Cardiology",
        experience_years=12,
        consultation_fee=Decimal("500.00"),
    ))


@pytest_asyncio.fixture
async def slot(db, doctor) -> Slot:
    return await _add(db, Slot(
        doctor_id=doctor.id,
        date=date(2026, 11, 3),
        start_time=time(10, 30),
        end_time=time(11, 0),
    ))


# ── Gateway ────────────────────────────────────────────────────────────────────

@pytest.fixture
def razorpay_sdk():
    """Stand-in for razorpay.Client with deterministic order and refund ids."""
    sdk = MagicMock()
    order_ids = itertools.count(1)

    def _create_order(data):
        return {
            "id": f"order_test_{next(order_ids)}",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "status": "created",
        }

    sdk.order.create.side_effect = _create_order
    sdk.payment.refund.side_effect = lambda payment_id, data: {
        "id": f"rfnd_{payment_id}",
        "amount": data["amount"],
    }
    return sdk


@pytest.fixture
def gateway(razorpay_sdk) -> RazorpayGatewayClient:
    return RazorpayGatewayClient(
        key_id="rzp_test_key",
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        currency="INR",
        callback_url="http://test/payments/callback",
        timeout_seconds=5,
        breaker=CircuitBreaker(fail_max=100, reset_timeout=60),
        client=razorpay_sdk,
    )


@pytest.fixture
def sign_checkout():
    def _sign(order_id: str, payment_id: str) -> str:
        return hmac.new(
            KEY_SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
        ).hexdigest()
    return _sign


@pytest.fixture
def sign_webhook():
    def _sign(body: bytes) -> str:
        return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return _sign


# ── Event log ──────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def event_log(redis) -> RedisStreamEventLog:
    return RedisStreamEventLog(redis, topic=TOPIC, partitions=3)


@pytest.fixture
def published(redis, event_log):
    """All records currently on the topic, across partitions."""
    async def _published():
        records = []
        for partition in range(event_log.partitions):
            records.extend(await redis.xrange(event_log.stream_name(partition)))
        return records
    return _published


# ── Services & HTTP ────────────────────────────────────────────────────────────

@pytest.fixture
def services(gateway, event_log) -> ServiceContainer:
    return ServiceContainer.build(gateway=gateway, event_log=event_log)


@pytest_asyncio.fixture
async def client(session_factory, services):
    from main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token(user.id, user.role.value)
        return {"Authorization": f"Bearer {token}"}
    return _headers
