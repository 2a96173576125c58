"""User model carrying wallet and trust state."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from fiesta.db.base import Base
from fiesta.models.mixins import TimestampMixin


class UserRole(str, enum.Enum):
    """Role enumeration for platform permissions."""

    MEMBER = "member"
    ADMIN = "admin"


class User(TimestampMixin, Base):
    """Marketplace member; hosts and travelers share this table."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_non_negative"),
        CheckConstraint("strikes >= 0", name="ck_users_strikes_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), default=UserRole.MEMBER, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Cached projection of the completed wallet transactions.
    wallet_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )
    wallet_frozen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    strikes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    banned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ban_reason: Mapped[str | None] = mapped_column(String(500))

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_banned(self) -> bool:
        return self.banned_at is not None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
