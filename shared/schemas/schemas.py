"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas, plus the notification event
wire shape shared by the dispatcher and the consumer.
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: str
    request_id: Optional[str] = None


# ── Slots ─────────────────────────────────────────────────────

class CreateSlotRequest(BaseSchema):
    slot_date: date
    start_time: time
    end_time: time


class SlotResponse(BaseSchema):
    slot_id: int
    doctor_id: int
    slot_date: date
    start_time: time
    end_time: time
    booked: bool


# ── Booking ───────────────────────────────────────────────────

class BookAppointmentRequest(BaseSchema):
    slot_id: int = Field(..., gt=0)


class BookingResponse(BaseSchema):
    appointment_id: int
    status: str
    gateway_order_id: str
    amount: Decimal
    currency: str
    checkout_options: Dict[str, Any]


class AppointmentStatusResponse(BaseSchema):
    appointment_id: int
    status: str
    payment_status: Optional[str]
    amount: Optional[Decimal]
    doctor_name: str
    appointment_date: date
    appointment_time: time


# ── Payment ───────────────────────────────────────────────────

class PaymentCallbackRequest(BaseSchema):
    """Fields posted back by Razorpay checkout on the redirect path."""
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class WebhookAck(BaseSchema):
    status: str


# ── Events ────────────────────────────────────────────────────

class NotificationEvent(BaseModel):
    """
    Immutable confirmation fact published to the event log.

    Wire shape is camelCase JSON:
        {"eventId", "appointmentId", "recipient", "doctorName", "patientName",
         "appointmentDate", "appointmentTime", "consultationFee", "createdAt",
         "extraRenderingData"}
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    appointment_id: str
    recipient: Optional[str] = None
    doctor_name: Optional[str] = None
    patient_name: Optional[str] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[time] = None
    consultation_fee: Optional[Decimal] = None
    extra_rendering_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_payload(self) -> dict:
        """JSON-safe dict for the outbox table."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, raw: str) -> "NotificationEvent":
        return cls.model_validate_json(raw)
