"""Dispute and dispute message models."""
from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiesta.db.base import Base
from fiesta.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from fiesta.models.match import Match


class DisputeReason(str, enum.Enum):
    """Why a participant contests a match."""

    NO_SHOW = "NO_SHOW"
    EXPERIENCE_MISMATCH = "EXPERIENCE_MISMATCH"
    SAFETY_CONCERN = "SAFETY_CONCERN"
    PAYMENT_ISSUE = "PAYMENT_ISSUE"
    COMMUNICATION = "COMMUNICATION"
    OTHER = "OTHER"

    @property
    def label(self) -> str:
        return _REASON_LABELS[self]


_REASON_LABELS: dict[DisputeReason, str] = {
    DisputeReason.NO_SHOW: "The other party did not show up",
    DisputeReason.EXPERIENCE_MISMATCH: "The experience did not match the listing",
    DisputeReason.SAFETY_CONCERN: "Safety concern",
    DisputeReason.PAYMENT_ISSUE: "Payment issue",
    DisputeReason.COMMUNICATION: "Communication problem",
    DisputeReason.OTHER: "Other",
}


class DisputeStatus(str, enum.Enum):
    """Review state of a dispute."""

    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeResolution(str, enum.Enum):
    """Final outcome recorded on a dispute."""

    RESOLVED_REFUND = "RESOLVED_REFUND"
    RESOLVED_PARTIAL_REFUND = "RESOLVED_PARTIAL_REFUND"
    RESOLVED_NO_REFUND = "RESOLVED_NO_REFUND"
    CLOSED = "CLOSED"


class AdminAction(str, enum.Enum):
    """Penalty applied alongside a resolution."""

    NONE = "none"
    WARNING = "warning"
    STRIKE = "strike"
    BAN = "ban"
    REMOVE_CONTENT = "remove_content"


ACTIVE_DISPUTE_STATUSES = frozenset({DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW})
TERMINAL_DISPUTE_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})


class Dispute(TimestampMixin, Base):
    """Contest over a match outcome."""

    __tablename__ = "disputes"
    __table_args__ = (
        Index(
            "uq_disputes_active_match",
            "match_id",
            unique=True,
            sqlite_where=text("status IN ('OPEN', 'UNDER_REVIEW')"),
            postgresql_where=text("status IN ('OPEN', 'UNDER_REVIEW')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    match_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    opener_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    respondent_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reason: Mapped[DisputeReason] = mapped_column(Enum(DisputeReason), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[str] | None] = mapped_column(JSON)
    status: Mapped[DisputeStatus] = mapped_column(
        Enum(DisputeStatus), default=DisputeStatus.OPEN, nullable=False
    )
    resolution: Mapped[DisputeResolution | None] = mapped_column(
        Enum(DisputeResolution)
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    refund_percentage: Mapped[int | None] = mapped_column(Integer)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    refund_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("wallet_transactions.id", ondelete="SET NULL")
    )
    admin_action: Mapped[AdminAction] = mapped_column(
        Enum(AdminAction), default=AdminAction.NONE, nullable=False
    )
    penalized_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    reviewed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    resolved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    match: Mapped["Match"] = relationship("Match")
    messages: Mapped[list["DisputeMessage"]] = relationship(
        "DisputeMessage",
        back_populates="dispute",
        order_by="DisputeMessage.created_at",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DISPUTE_STATUSES

    @property
    def reason_label(self) -> str:
        return self.reason.label


class DisputeMessage(Base):
    """Message in a dispute thread."""

    __tablename__ = "dispute_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attachments: Mapped[list[str] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="messages")
