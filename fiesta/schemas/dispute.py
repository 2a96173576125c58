"""Pydantic schemas for disputes and their resolution."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from fiesta.models.dispute import (
    AdminAction,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
)


class RefundResolution(BaseModel):
    """Full refund of the match total to the requester."""

    kind: Literal["RESOLVED_REFUND"] = "RESOLVED_REFUND"

    @property
    def refund_percentage(self) -> int:
        return 100


class PartialRefundResolution(BaseModel):
    """Refund a share of the match total; strictly between 0 and 100 percent."""

    kind: Literal["RESOLVED_PARTIAL_REFUND"] = "RESOLVED_PARTIAL_REFUND"
    refund_percentage: int = Field(gt=0, lt=100)


class NoRefundResolution(BaseModel):
    kind: Literal["RESOLVED_NO_REFUND"] = "RESOLVED_NO_REFUND"

    @property
    def refund_percentage(self) -> int:
        return 0


class CloseResolution(BaseModel):
    """Close without a finding (withdrawn, duplicate, out of scope)."""

    kind: Literal["CLOSED"] = "CLOSED"

    @property
    def refund_percentage(self) -> int:
        return 0


ResolutionDecision = Annotated[
    Union[
        RefundResolution,
        PartialRefundResolution,
        NoRefundResolution,
        CloseResolution,
    ],
    Field(discriminator="kind"),
]


class DisputeCreate(BaseModel):
    match_id: uuid.UUID
    reason: DisputeReason
    description: str = Field(min_length=10, max_length=4000)
    evidence: list[str] = Field(default_factory=list, max_length=10)


class DisputeMessageCreate(BaseModel):
    body: str = Field(min_length=1, max_length=4000)
    attachments: list[str] = Field(default_factory=list, max_length=10)


class DisputeResolveRequest(BaseModel):
    """Admin decision on a dispute."""

    decision: ResolutionDecision
    admin_action: AdminAction = AdminAction.NONE
    admin_notes: str | None = Field(default=None, max_length=4000)
    penalized_user_id: uuid.UUID | None = None


class DisputeMessageRead(BaseModel):
    id: uuid.UUID
    dispute_id: uuid.UUID
    author_id: uuid.UUID
    body: str
    is_admin: bool
    attachments: list[str] | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DisputeRead(BaseModel):
    """Serialized dispute."""

    id: uuid.UUID
    match_id: uuid.UUID
    opener_id: uuid.UUID
    respondent_id: uuid.UUID
    reason: DisputeReason
    reason_label: str
    description: str
    evidence: list[str] | None = None
    status: DisputeStatus
    resolution: DisputeResolution | None = None
    resolution_notes: str | None = None
    refund_percentage: int | None = None
    refund_amount: Decimal | None = None
    refund_transaction_id: uuid.UUID | None = None
    admin_action: AdminAction
    penalized_user_id: uuid.UUID | None = None
    resolved_by_id: uuid.UUID | None = None
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DisputeDetail(DisputeRead):
    messages: list[DisputeMessageRead] = Field(default_factory=list)


class DisputePage(BaseModel):
    items: list[DisputeRead]
    total: int
    page: int
    page_size: int


class DisputeStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_reason: dict[str, int]
    last_30_days: int
    total_refunded: Decimal
