import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import SideEffectKind, SideEffectStatus, enum_values


class SideEffect(Base):
    """
    Outbox row for work that must happen after a state change commits
    (pharmacy submission, emails, payment links). Written in the same
    transaction as the change, then drained with backoff.
    """
    __tablename__ = "side_effects"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    kind: Mapped[SideEffectKind] = mapped_column(
        Enum(SideEffectKind, name="side_effect_kind_enum", values_callable=enum_values),
        nullable=False,
    )

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # e.g. "submit_to_pharmacy:<prescription id>"
    dedupe_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    status: Mapped[SideEffectStatus] = mapped_column(
        Enum(SideEffectStatus, name="side_effect_status_enum", values_callable=enum_values),
        default=SideEffectStatus.PENDING,
        nullable=False,
        index=True,
    )

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
