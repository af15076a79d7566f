from enum import Enum


class PrescriptionStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_RECEIVED = "payment_received"
    SUBMITTED = "submitted"
    PACKED = "packed"
    APPROVED = "approved"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PrescriptionType(str, Enum):
    PRESCRIPTION = "prescription"
    REFILL = "refill"


class PrescriptionPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DECLINED = "declined"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class OrderProgress(str, Enum):
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_RECEIVED = "payment_received"
    PROVIDER_APPROVED = "provider_approved"
    PHARMACY_PROCESSING = "pharmacy_processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class PaymentEnvironment(str, Enum):
    SANDBOX = "sandbox"
    LIVE = "live"


class LogStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class CronRunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class SideEffectKind(str, Enum):
    SUBMIT_TO_PHARMACY = "submit_to_pharmacy"
    SEND_CONFIRMATION_EMAIL = "send_confirmation_email"
    GENERATE_PAYMENT_LINK = "generate_payment_link"


class SideEffectStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    DEAD = "dead"


def enum_values(enum_cls) -> list[str]:
    """values_callable for sqlalchemy.Enum so the DB stores 'pending', not 'PENDING'."""
    return [e.value for e in enum_cls]
