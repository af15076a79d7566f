"""
Allowed status moves for prescriptions and payment transactions.

Every write to `Prescription.status` or `PaymentTransaction.payment_status`
goes through `transition_prescription` / `transition_payment` so an
illegal move (e.g. delivered -> packed) is rejected in one place.
"""
import logging

from app.core.exceptions import InvalidTransition
from app.db.enums import OrderProgress, PaymentStatus, PrescriptionStatus

logger = logging.getLogger(__name__)


_P = PrescriptionStatus

PRESCRIPTION_TRANSITIONS: dict[PrescriptionStatus, frozenset[PrescriptionStatus]] = {
    _P.PENDING_PAYMENT: frozenset({_P.PAYMENT_RECEIVED, _P.SUBMITTED, _P.CANCELLED}),
    _P.PAYMENT_RECEIVED: frozenset({_P.SUBMITTED, _P.CANCELLED}),
    _P.SUBMITTED: frozenset({_P.PACKED, _P.APPROVED, _P.PICKED_UP, _P.DELIVERED, _P.CANCELLED}),
    # DigitalRx packs then approves for shipping, but either date can land first
    _P.PACKED: frozenset({_P.APPROVED, _P.PICKED_UP, _P.DELIVERED}),
    _P.APPROVED: frozenset({_P.PACKED, _P.PICKED_UP, _P.DELIVERED}),
    _P.PICKED_UP: frozenset({_P.DELIVERED}),
    _P.DELIVERED: frozenset(),
    _P.CANCELLED: frozenset(),
}


_S = PaymentStatus

_RETRYABLE = frozenset({_S.COMPLETED, _S.DECLINED, _S.FAILED, _S.CANCELLED, _S.EXPIRED})

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    _S.PENDING: _RETRYABLE,
    _S.DECLINED: _RETRYABLE,
    _S.FAILED: _RETRYABLE,
    # void after capture lands as cancelled
    _S.COMPLETED: frozenset({_S.REFUNDED, _S.CANCELLED}),
    _S.REFUNDED: frozenset(),
    _S.CANCELLED: frozenset(),
    _S.EXPIRED: frozenset(),
}


def can_transition_prescription(current: PrescriptionStatus, target: PrescriptionStatus) -> bool:
    return current == target or target in PRESCRIPTION_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return current == target or target in PAYMENT_TRANSITIONS[current]


def transition_prescription(prescription, target: PrescriptionStatus) -> bool:
    """
    Moves `prescription.status` to `target`.

    Returns True when the status changed, False for a same-state no-op.
    Raises InvalidTransition for anything the table does not allow.
    """
    target = PrescriptionStatus(target)
    current = prescription.status

    if current == target:
        return False

    if not can_transition_prescription(current, target):
        raise InvalidTransition(current, target)

    prescription.status = target
    logger.info(
        f"Prescription status {current.value} -> {target.value}",
        extra={"prescription_id": prescription.id},
    )
    return True


def transition_payment(transaction, target: PaymentStatus) -> bool:
    target = PaymentStatus(target)
    current = transaction.payment_status

    if current == target:
        return False

    if not can_transition_payment(current, target):
        raise InvalidTransition(current, target)

    transaction.payment_status = target
    logger.info(
        f"Payment status {current.value} -> {target.value}",
        extra={"transaction_id": transaction.id},
    )
    return True


def payment_sources(target: PaymentStatus) -> frozenset[PaymentStatus]:
    """Statuses a transaction may be in for a move to `target` (for WHERE clauses)."""
    return frozenset(
        status for status, targets in PAYMENT_TRANSITIONS.items() if target in targets
    )


def is_terminal(status: PrescriptionStatus) -> bool:
    return not PRESCRIPTION_TRANSITIONS[status]


# Order progress only ever moves forward
ORDER_PROGRESS_SEQUENCE = (
    OrderProgress.PAYMENT_PENDING,
    OrderProgress.PAYMENT_RECEIVED,
    OrderProgress.PROVIDER_APPROVED,
    OrderProgress.PHARMACY_PROCESSING,
    OrderProgress.SHIPPED,
    OrderProgress.DELIVERED,
)

# Pharmacy-side prescription status -> patient-facing order progress
ORDER_PROGRESS_FOR_STATUS = {
    PrescriptionStatus.PAYMENT_RECEIVED: OrderProgress.PAYMENT_RECEIVED,
    PrescriptionStatus.SUBMITTED: OrderProgress.PHARMACY_PROCESSING,
    PrescriptionStatus.PACKED: OrderProgress.PHARMACY_PROCESSING,
    PrescriptionStatus.APPROVED: OrderProgress.PHARMACY_PROCESSING,
    PrescriptionStatus.PICKED_UP: OrderProgress.SHIPPED,
    PrescriptionStatus.DELIVERED: OrderProgress.DELIVERED,
}


def advance_order_progress(transaction, target: OrderProgress) -> bool:
    if transaction is None:
        return False

    current = transaction.order_progress or OrderProgress.PAYMENT_PENDING
    if ORDER_PROGRESS_SEQUENCE.index(target) <= ORDER_PROGRESS_SEQUENCE.index(current):
        return False

    transaction.order_progress = target
    return True
