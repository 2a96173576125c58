"""Pydantic schemas for matches."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fiesta.core.timeutils import coerce_utc
from fiesta.models.experience import CancellationPolicy
from fiesta.models.match import MatchStatus, ParticipantRole


class _DateRange(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "_DateRange":
        if self.start_date and self.end_date:
            if coerce_utc(self.end_date) < coerce_utc(self.start_date):
                raise ValueError("end_date must not be before start_date")
        return self


class MatchCreate(_DateRange):
    """Payload for requesting a match."""

    experience_id: uuid.UUID
    participants: int = Field(default=1, ge=1, le=50)
    message: str | None = Field(default=None, max_length=2000)


class MatchAccept(_DateRange):
    """Optional dates the host fixes when accepting."""


class MatchReject(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class MatchCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class MatchComplete(BaseModel):
    force: bool = False


class MatchRead(BaseModel):
    """Serialized match representation."""

    id: uuid.UUID
    experience_id: uuid.UUID
    host_id: uuid.UUID
    requester_id: uuid.UUID
    status: MatchStatus
    participants: int
    total_price: Decimal | None = None
    message: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    host_confirmed: bool
    requester_confirmed: bool
    rejection_reason: str | None = None
    accepted_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CancellationRead(BaseModel):
    match_id: uuid.UUID
    previous_status: MatchStatus
    cancelled_by_id: uuid.UUID | None = None
    cancelled_by_role: ParticipantRole
    reason: str | None = None
    policy: CancellationPolicy | None = None
    refund_percentage: int
    fee_amount: Decimal
    refund_amount: Decimal
    penalty_amount: Decimal
    host_refund_amount: Decimal
    hours_until_start: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MatchCancelResponse(BaseModel):
    match: MatchRead
    cancellation: CancellationRead


class CancellationPreview(BaseModel):
    cancelled_by: ParticipantRole
    policy: CancellationPolicy | None = None
    policy_description: str | None = None
    refund_percentage: int
    requester_fee: Decimal
    requester_refund: Decimal
    penalty_amount: Decimal
    host_fee: Decimal
    host_refund: Decimal
    hours_until_start: int | None = None


class CancellationStats(BaseModel):
    total: int
    as_host: int
    as_requester: int
    last_30_days: int
    total_refunded: Decimal


class MatchStats(BaseModel):
    as_host: dict[str, int]
    as_requester: dict[str, int]


class MatchPage(BaseModel):
    items: list[MatchRead]
    total: int
    page: int
    page_size: int


class ExpirySweepResult(BaseModel):
    expired: int
    match_ids: list[uuid.UUID]
