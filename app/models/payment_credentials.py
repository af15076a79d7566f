import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import PaymentEnvironment, enum_values


class PaymentCredentials(Base):
    """Merchant Authorize.Net keys. At most one row may be active."""

    __tablename__ = "payment_credentials"
    __table_args__ = (
        Index(
            "uq_payment_credentials_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    merchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    api_login_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    signature_key_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    environment: Mapped[PaymentEnvironment] = mapped_column(
        Enum(PaymentEnvironment, name="payment_environment_enum", values_callable=enum_values),
        default=PaymentEnvironment.SANDBOX,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
