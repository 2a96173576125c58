"""Experience listings as seen by the booking core."""
from __future__ import annotations

import enum
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiesta.db.base import Base
from fiesta.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from fiesta.models.user import User


class ExperienceType(str, enum.Enum):
    """How the requester pays the host."""

    PAID = "pago"
    EXCHANGE = "intercambio"
    MIXED = "ambos"


class CancellationPolicy(str, enum.Enum):
    """Refund schedule the host chose for the listing."""

    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"
    NON_REFUNDABLE = "non_refundable"


class Experience(TimestampMixin, Base):
    """Host listing. Maintained by the listing service; read here for terms."""

    __tablename__ = "experiences"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_experiences_capacity_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    host_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    experience_type: Mapped[ExperienceType] = mapped_column(
        Enum(ExperienceType), nullable=False
    )
    price_per_person: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    capacity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    cancellation_policy: Mapped[CancellationPolicy] = mapped_column(
        Enum(CancellationPolicy), default=CancellationPolicy.FLEXIBLE, nullable=False
    )
    published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    host: Mapped["User"] = relationship("User")
