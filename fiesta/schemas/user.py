"""User-related schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from fiesta.models.user import UserRole


class UserCreate(BaseModel):
    """Payload for creating a user."""

    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1, max_length=200)
    role: UserRole = UserRole.MEMBER


class UserRead(BaseModel):
    """Serialized user representation."""

    id: uuid.UUID
    email: str
    full_name: str
    role: UserRole
    is_active: bool
    strikes: int
    banned_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserTrustRead(UserRead):
    """Admin view including moderation and wallet state."""

    ban_reason: str | None = None
    wallet_balance: Decimal
    wallet_frozen_at: datetime | None = None


class UserPage(BaseModel):
    items: list[UserTrustRead]
    total: int
    page: int
    page_size: int


class StrikeRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


class BanRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)
