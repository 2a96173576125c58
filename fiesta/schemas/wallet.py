"""Wallet schemas."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from fiesta.models.wallet import TransactionStatus, TransactionType


class WalletRead(BaseModel):
    user_id: uuid.UUID
    balance: Decimal
    currency: str
    platform_fee: Decimal
    min_top_up: Decimal
    can_operate: bool
    frozen: bool

    model_config = ConfigDict(from_attributes=True)


class WalletTransactionRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    balance_after: Decimal | None = None
    related_match_id: uuid.UUID | None = None
    counterparty_id: uuid.UUID | None = None
    description: str | None = None
    external_reference: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WalletTransactionPage(BaseModel):
    items: list[WalletTransactionRead]
    total: int
    page: int
    page_size: int


class TopUpCreate(BaseModel):
    """Captured payment handed over by the payment processor."""

    user_id: uuid.UUID
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    external_reference: str | None = Field(default=None, max_length=255)


class ReconcileRead(BaseModel):
    user_id: uuid.UUID
    balance: Decimal
    consistent: bool = True
