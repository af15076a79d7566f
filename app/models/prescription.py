import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import (
    PrescriptionPaymentStatus,
    PrescriptionStatus,
    PrescriptionType,
    enum_values,
)


class Prescription(Base):
    __tablename__ = "prescriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    prescriber_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("patients.id"),
        nullable=False,
        index=True,
    )

    pharmacy_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("pharmacies.id"),
        nullable=True,
        index=True,
    )

    # Medication
    medication: Mapped[str] = mapped_column(String(255), nullable=False)
    dosage: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    sig: Mapped[str | None] = mapped_column(Text, nullable=True)
    pharmacy_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing: patient_price is dollars, the fees are cents
    patient_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    profit_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shipping_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Lifecycle
    status: Mapped[PrescriptionStatus] = mapped_column(
        Enum(PrescriptionStatus, name="prescription_status_enum", values_callable=enum_values),
        default=PrescriptionStatus.PENDING_PAYMENT,
        nullable=False,
        index=True,
    )

    payment_status: Mapped[PrescriptionPaymentStatus] = mapped_column(
        Enum(PrescriptionPaymentStatus, name="prescription_payment_status_enum", values_callable=enum_values),
        default=PrescriptionPaymentStatus.PENDING,
        nullable=False,
    )

    payment_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey(
            "payment_transactions.id",
            use_alter=True,
            name="fk_prescriptions_payment_transaction_id",
            ondelete="SET NULL",
        ),
        nullable=True,
    )

    # DigitalRx
    queue_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    submitted_to_pharmacy_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Refills
    prescription_type: Mapped[PrescriptionType] = mapped_column(
        Enum(PrescriptionType, name="prescription_type_enum", values_callable=enum_values),
        default=PrescriptionType.PRESCRIPTION,
        nullable=False,
        index=True,
    )

    parent_prescription_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("prescriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    refills: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_refills_to_date: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refill_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_refill_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

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


    # Relationships
    prescriber = relationship("User", foreign_keys=[prescriber_id])
    patient = relationship("Patient", foreign_keys=[patient_id])
    pharmacy = relationship("Pharmacy", foreign_keys=[pharmacy_id])
    payment_transaction = relationship(
        "PaymentTransaction",
        foreign_keys=[payment_transaction_id],
        post_update=True,
    )
    parent = relationship("Prescription", remote_side=[id])
