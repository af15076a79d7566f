import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

DIGITALRX_SYSTEM = "DigitalRx"


class Pharmacy(Base):
    __tablename__ = "pharmacies"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    backends = relationship("PharmacyBackend", back_populates="pharmacy")


class PharmacyBackend(Base):
    """Per-pharmacy integration credentials for the dispensing system."""

    __tablename__ = "pharmacy_backends"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    pharmacy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pharmacies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    system_type: Mapped[str] = mapped_column(
        String(50),
        default=DIGITALRX_SYSTEM,
        nullable=False,
    )

    api_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    store_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # AES-256-GCM, see app.core.encryption
    api_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    pharmacy = relationship("Pharmacy", back_populates="backends")
