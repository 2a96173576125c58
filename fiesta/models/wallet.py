"""Append-only wallet ledger."""
from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from fiesta.db.base import Base


class TransactionType(str, enum.Enum):
    """Reasons money moves through a wallet."""

    TOPUP = "topup"
    PLATFORM_FEE = "platform_fee"
    REFUND = "refund"
    PAYOUT = "payout"


class TransactionStatus(str, enum.Enum):
    """Settlement state; completed and failed are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WalletTransaction(Base):
    """Immutable ledger entry. Positive amounts credit, negative amounts debit."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_wallet_transactions_amount_nonzero"),
        Index("ix_wallet_transactions_user_created", "user_id", "created_at"),
        Index(
            "uq_wallet_transactions_external_reference",
            "external_reference",
            unique=True,
            sqlite_where=text("external_reference IS NOT NULL"),
            postgresql_where=text("external_reference IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    balance_after: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    related_match_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("matches.id", ondelete="SET NULL"), index=True
    )
    counterparty_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    description: Mapped[str | None] = mapped_column(String(500))
    external_reference: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
