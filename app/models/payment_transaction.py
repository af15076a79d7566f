import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import OrderProgress, PaymentStatus, enum_values


class PaymentTransaction(Base):
    """
    One row per payment attempt for a prescription.

    `authnet_ref_id` is what Authorize.Net echoes back as the invoice number,
    so webhooks are matched on it rather than on our UUID.
    """
    __tablename__ = "payment_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    prescription_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("prescriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Breakdown in cents
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    consultation_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    medication_cost_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shipping_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Who
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True
    )
    patient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    patient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    provider_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    pharmacy_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("pharmacies.id", ondelete="SET NULL"), nullable=True
    )
    pharmacy_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Authorize.Net (refId / invoiceNumber max 20 chars)
    authnet_ref_id: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    authnet_transaction_id: Mapped[str | None] = mapped_column(
        String(64), unique=True, nullable=True
    )
    authnet_response_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    authnet_response_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Payment link
    payment_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    payment_link_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    payment_link_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_link_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Card (last four only)
    card_last_four: Mapped[str | None] = mapped_column(String(4), nullable=True)
    card_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status_enum", values_callable=enum_values),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )

    order_progress: Mapped[OrderProgress] = mapped_column(
        Enum(OrderProgress, name="order_progress_enum", values_callable=enum_values),
        default=OrderProgress.PAYMENT_PENDING,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Notifications
    payment_link_email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_confirmation_email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Webhook data (debugging)
    webhook_received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    webhook_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    refund_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    prescription = relationship("Prescription", foreign_keys=[prescription_id])
