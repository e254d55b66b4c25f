"""
shared/exceptions.py
Domain error taxonomy. Services raise these; main.py maps them to HTTP.
"""

from typing import Optional


class DomainError(Exception):
    """Expected business outcome that callers can act on."""

    status_code: int = 400
    code: str = "domain_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class Conflict(DomainError):
    """Slot already taken by another WAITING/CONFIRMED appointment."""
    status_code = 409
    code = "conflict"


class InvalidState(DomainError):
    """Transition not allowed from the record's current state."""
    status_code = 400
    code = "invalid_state"


class Unauthorized(DomainError):
    status_code = 403
    code = "unauthorized"


class SecurityViolation(DomainError):
    """Gateway signature did not verify. Never retried, never applied."""
    status_code = 403
    code = "security_violation"


class GatewayError(DomainError):
    """Payment gateway failed, timed out, or its circuit is open."""
    status_code = 502
    code = "gateway_error"


class PoisonMessage(DomainError):
    """Event record that can never be delivered (unparsable or missing recipient)."""
    status_code = 422
    code = "poison_message"


class NotificationDeliveryError(Exception):
    """External sender failed; the consumer's retry policy may try again."""
