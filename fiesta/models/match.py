"""Match (booking request) and cancellation records."""
from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiesta.db.base import Base
from fiesta.models.experience import CancellationPolicy
from fiesta.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from fiesta.models.experience import Experience


class MatchStatus(str, enum.Enum):
    """Lifecycle states for a match."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ParticipantRole(str, enum.Enum):
    """Side of the match a user is on."""

    HOST = "host"
    REQUESTER = "requester"


class Match(TimestampMixin, Base):
    """Single source of truth for a booking's status."""

    __tablename__ = "matches"
    __table_args__ = (
        CheckConstraint("host_id <> requester_id", name="ck_matches_distinct_parties"),
        CheckConstraint("participants >= 1", name="ck_matches_participants_positive"),
        Index(
            "uq_matches_active_request",
            "experience_id",
            "requester_id",
            unique=True,
            sqlite_where=text("status IN ('PENDING', 'ACCEPTED')"),
            postgresql_where=text("status IN ('PENDING', 'ACCEPTED')"),
        ),
        Index("ix_matches_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    experience_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("experiences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    host_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus), default=MatchStatus.PENDING, nullable=False
    )
    participants: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    message: Mapped[str | None] = mapped_column(Text)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    host_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requester_confirmed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    rejection_reason: Mapped[str | None] = mapped_column(String(500))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    experience: Mapped["Experience"] = relationship("Experience")
    cancellation: Mapped["Cancellation | None"] = relationship(
        "Cancellation", back_populates="match", uselist=False
    )

    def role_of(self, user_id: uuid.UUID) -> ParticipantRole | None:
        if user_id == self.host_id:
            return ParticipantRole.HOST
        if user_id == self.requester_id:
            return ParticipantRole.REQUESTER
        return None

    def counterpart_of(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.requester_id if user_id == self.host_id else self.host_id


class Cancellation(Base):
    """What a cancellation refunded and withheld, kept for display."""

    __tablename__ = "cancellations"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    match_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    cancelled_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    cancelled_by_role: Mapped[ParticipantRole] = mapped_column(
        Enum(ParticipantRole), nullable=False
    )
    previous_status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(String(500))
    policy: Mapped[CancellationPolicy | None] = mapped_column(Enum(CancellationPolicy))
    refund_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )
    refund_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )
    penalty_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )
    host_refund_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )
    hours_until_start: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    match: Mapped["Match"] = relationship("Match", back_populates="cancellation")
