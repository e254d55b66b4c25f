"""
services/notification/senders.py
Email delivery for notification events via Resend.
"""

import asyncio
import logging
from typing import Dict, Mapping, Tuple

import resend

from shared.exceptions import NotificationDeliveryError
from shared.schemas.schemas import NotificationEvent

logger = logging.getLogger(__name__)


# ── Notification Templates ────────────────────────────────────

TEMPLATES = {
    "APPOINTMENT_CONFIRMED": {
        "email_subject": "New appointment on {appointmentDate} at {appointmentTime}",
        "email_html": (
            "<p>Dear Dr. {doctorName},</p>"
            "<p>{patientName} has booked and paid for a consultation with you on "
            "<strong>{appointmentDate}</strong> at <strong>{appointmentTime}</strong>.</p>"
            "<p>Consultation fee received: {consultationFee}</p>"
        ),
    },
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def rendering_values(event: NotificationEvent) -> Dict[str, str]:
    """Placeholder values for an event: extra rendering data, then the typed fields."""
    values = {key: str(value) for key, value in event.extra_rendering_data.items()}
    if event.doctor_name:
        values["doctorName"] = event.doctor_name
    if event.patient_name:
        values["patientName"] = event.patient_name
    if event.appointment_date:
        values["appointmentDate"] = event.appointment_date.isoformat()
    if event.appointment_time:
        values["appointmentTime"] = event.appointment_time.strftime("%H:%M")
    if event.consultation_fee is not None:
        values["consultationFee"] = f"₹{event.consultation_fee:.2f}"
    return values


def _render(template_key: str, data: Mapping[str, str]) -> Tuple[str, str]:
    """Render (subject, html) for a template, blanking unknown placeholders."""
    tmpl = TEMPLATES[template_key]
    values = _Defaults(data)
    return tmpl["email_subject"].format_map(values), tmpl["email_html"].format_map(values)


class ResendEmailSender:
    def __init__(self, api_key: str, sender_address: str):
        self.sender_address = sender_address
        resend.api_key = api_key

    async def send(self, event: NotificationEvent) -> None:
        """Send the confirmation email. Raises NotificationDeliveryError on any failure."""
        subject, html_body = _render("APPOINTMENT_CONFIRMED", rendering_values(event))
        try:
            await asyncio.to_thread(resend.Emails.send, {
                "from": self.sender_address,
                "to": event.recipient,
                "subject": subject,
                "html": html_body,
            })
        except Exception as e:
            logger.warning(f"Email send failed for event {event.event_id}: {e}")
            raise NotificationDeliveryError(str(e)) from e
        logger.info(f"Confirmation email sent to {event.recipient} (event {event.event_id})")
