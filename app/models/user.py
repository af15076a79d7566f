import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.roles import UserRole
from app.db.base import Base
from app.db.enums import enum_values


class User(Base):
    """
    Accounts that call the API. Providers are users with role=provider;
    their NPI, address and signature go out on DigitalRx submissions.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_roles", values_callable=enum_values),
        nullable=False,
        default=UserRole.PROVIDER,
        index=True,
    )

    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Provider-specific
    npi_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    signature_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # {"street", "city", "state", "zip"}
    physical_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
