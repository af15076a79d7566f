from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.core.exceptions import InvalidTransition
from app.db.enums import OrderProgress, PaymentStatus, PrescriptionStatus
from app.services.lifecycle import (
    advance_order_progress,
    can_transition_prescription,
    is_terminal,
    payment_sources,
    transition_payment,
    transition_prescription,
)


def _rx(status):
    return SimpleNamespace(id=uuid4(), status=status)


def _tx(status=PaymentStatus.PENDING, progress=OrderProgress.PAYMENT_PENDING):
    return SimpleNamespace(id=uuid4(), payment_status=status, order_progress=progress)


def test_forward_prescription_moves_are_allowed():
    rx = _rx(PrescriptionStatus.PENDING_PAYMENT)

    assert transition_prescription(rx, PrescriptionStatus.PAYMENT_RECEIVED)
    assert transition_prescription(rx, PrescriptionStatus.SUBMITTED)
    assert transition_prescription(rx, PrescriptionStatus.PICKED_UP)
    assert rx.status == PrescriptionStatus.PICKED_UP


def test_same_state_is_a_no_op():
    rx = _rx(PrescriptionStatus.PACKED)
    assert transition_prescription(rx, PrescriptionStatus.PACKED) is False


def test_backwards_move_is_rejected():
    rx = _rx(PrescriptionStatus.DELIVERED)

    with pytest.raises(InvalidTransition) as exc:
        transition_prescription(rx, PrescriptionStatus.PACKED)

    assert exc.value.status_code == 409
    assert rx.status == PrescriptionStatus.DELIVERED


def test_packed_and_approved_may_arrive_in_either_order():
    assert can_transition_prescription(PrescriptionStatus.PACKED, PrescriptionStatus.APPROVED)
    assert can_transition_prescription(PrescriptionStatus.APPROVED, PrescriptionStatus.PACKED)


def test_terminal_statuses():
    assert is_terminal(PrescriptionStatus.DELIVERED)
    assert is_terminal(PrescriptionStatus.CANCELLED)
    assert not is_terminal(PrescriptionStatus.SUBMITTED)


def test_completed_payment_cannot_go_back_to_pending():
    tx = _tx(PaymentStatus.COMPLETED)

    with pytest.raises(InvalidTransition):
        transition_payment(tx, PaymentStatus.PENDING)

    assert transition_payment(tx, PaymentStatus.REFUNDED)


def test_declined_payment_can_be_retried():
    tx = _tx(PaymentStatus.DECLINED)
    assert transition_payment(tx, PaymentStatus.COMPLETED)


def test_sources_for_completion_exclude_terminal_states():
    sources = payment_sources(PaymentStatus.COMPLETED)

    assert sources == {PaymentStatus.PENDING, PaymentStatus.DECLINED, PaymentStatus.FAILED}


def test_order_progress_only_moves_forward():
    tx = _tx(progress=OrderProgress.SHIPPED)

    assert advance_order_progress(tx, OrderProgress.PHARMACY_PROCESSING) is False
    assert tx.order_progress == OrderProgress.SHIPPED

    assert advance_order_progress(tx, OrderProgress.DELIVERED) is True
    assert tx.order_progress == OrderProgress.DELIVERED


def test_order_progress_ignores_missing_transaction():
    assert advance_order_progress(None, OrderProgress.DELIVERED) is False
