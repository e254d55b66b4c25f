"""
tests/test_state_machine.py
Transition table: only the listed edges exist and every applied edge is audited.
"""

from unittest.mock import MagicMock

import pytest

from services.payment.state_machine import Transition, apply_transition, next_states
from shared.exceptions import InvalidState
from shared.models.models import (
    Appointment,
    AppointmentAuditLog,
    AppointmentStatus as A,
    PaymentOrder,
    PaymentStatus as P,
)


@pytest.mark.parametrize("transition, expected", [
    (Transition.SUCCESS, (A.CONFIRMED, P.SUCCESS)),
    (Transition.FAILURE, (A.FAILED, P.FAILED)),
    (Transition.TIMEOUT, (A.FAILED, P.FAILED)),
    (Transition.CANCEL, None),
])
def test_edges_from_waiting(transition, expected):
    assert next_states(A.WAITING, P.PENDING, transition) == expected


def test_only_cancel_leaves_confirmed():
    assert next_states(A.CONFIRMED, P.SUCCESS, Transition.CANCEL) == (A.CANCELLED, P.REFUNDED)
    for transition in (Transition.SUCCESS, Transition.FAILURE, Transition.TIMEOUT):
        assert next_states(A.CONFIRMED, P.SUCCESS, transition) is None


@pytest.mark.parametrize("state", [(A.FAILED, P.FAILED), (A.CANCELLED, P.REFUNDED)])
def test_terminal_states_have_no_edges(state):
    assert all(next_states(*state, t) is None for t in Transition)


def test_apply_transition_moves_both_records_and_audits():
    db = MagicMock()
    appointment = Appointment(id=7, status=A.WAITING)
    payment = PaymentOrder(status=P.PENDING)

    apply_transition(db, appointment, payment, Transition.TIMEOUT, actor="sweeper", reason="expired")

    assert (appointment.status, payment.status) == (A.FAILED, P.FAILED)
    audit = db.add.call_args.args[0]
    assert isinstance(audit, AppointmentAuditLog)
    assert (audit.appointment_id, audit.from_status, audit.to_status) == (7, "WAITING", "FAILED")
    assert audit.actor == "sweeper"


def test_illegal_transition_changes_nothing():
    db = MagicMock()
    appointment = Appointment(id=7, status=A.FAILED)
    payment = PaymentOrder(status=P.FAILED)

    with pytest.raises(InvalidState):
        apply_transition(db, appointment, payment, Transition.SUCCESS, actor="gateway")

    assert (appointment.status, payment.status) == (A.FAILED, P.FAILED)
    db.add.assert_not_called()
