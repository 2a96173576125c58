"""Cancellation refund policies.

Pure calculations: nothing here touches the database. The match service asks
for a plan, then moves the money the plan describes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Final

from fiesta.core.config import get_settings
from fiesta.core.money import ZERO, percentage_of, to_money
from fiesta.core.timeutils import coerce_utc, utcnow
from fiesta.models import CancellationPolicy, ParticipantRole

# (minimum hours before start, refund percentage), best tier first.
_REFUND_TIERS: Final[dict[CancellationPolicy, tuple[tuple[int, int], ...]]] = {
    CancellationPolicy.FLEXIBLE: ((24, 100),),
    CancellationPolicy.MODERATE: ((72, 100), (24, 50)),
    CancellationPolicy.STRICT: ((168, 100), (72, 50)),
    CancellationPolicy.NON_REFUNDABLE: (),
}

_POLICY_DESCRIPTIONS: Final[dict[CancellationPolicy, str]] = {
    CancellationPolicy.FLEXIBLE: "Full refund up to 24 hours before the start.",
    CancellationPolicy.MODERATE: (
        "Full refund up to 72 hours before the start, 50% up to 24 hours before."
    ),
    CancellationPolicy.STRICT: (
        "Full refund up to 7 days before the start, 50% up to 72 hours before."
    ),
    CancellationPolicy.NON_REFUNDABLE: "No refund after the host accepts.",
}


@dataclass(frozen=True)
class RefundQuote:
    policy: CancellationPolicy
    refund_percentage: int
    amount: Decimal
    refund_amount: Decimal
    penalty_amount: Decimal
    hours_until_start: int | None


@dataclass(frozen=True)
class CancellationPlan:
    cancelled_by: ParticipantRole
    policy: CancellationPolicy | None
    refund_percentage: int
    requester_fee: Decimal
    requester_refund: Decimal
    penalty_amount: Decimal
    host_fee: Decimal
    host_refund: Decimal
    hours_until_start: int | None

    @property
    def moves_money(self) -> bool:
        return self.requester_refund > ZERO or self.host_refund > ZERO


def describe_policy(policy: CancellationPolicy) -> str:
    return _POLICY_DESCRIPTIONS[policy]


def hours_until(start_date: datetime | None, now: datetime | None = None) -> int | None:
    if start_date is None:
        return None
    delta = coerce_utc(start_date) - coerce_utc(now or utcnow())
    return math.floor(delta.total_seconds() / 3600)


def refund_percentage(policy: CancellationPolicy, hours_until_start: int | None) -> int:
    """Percentage refunded under ``policy``; undated bookings are fully refundable."""
    if hours_until_start is None:
        return 100
    for threshold, percentage in _REFUND_TIERS[policy]:
        if hours_until_start >= threshold:
            return percentage
    return 0


def calculate_refund(
    policy: CancellationPolicy,
    *,
    amount: Decimal,
    start_date: datetime | None,
    now: datetime | None = None,
) -> RefundQuote:
    hours = hours_until(start_date, now)
    percentage = refund_percentage(policy, hours)
    base = to_money(amount)
    refund_amount = percentage_of(base, percentage)
    return RefundQuote(
        policy=policy,
        refund_percentage=percentage,
        amount=base,
        refund_amount=refund_amount,
        penalty_amount=base - refund_amount,
        hours_until_start=hours,
    )


def plan_cancellation(
    *,
    cancelled_by: ParticipantRole,
    policy: CancellationPolicy | None,
    start_date: datetime | None,
    requester_fee: Decimal,
    host_fee: Decimal,
    now: datetime | None = None,
) -> CancellationPlan:
    """Work out the refunds for cancelling an accepted match.

    A host cancellation refunds the requester a configured share of their fee
    (all of it by default) and keeps the host's fee. A requester cancellation
    follows the listing's policy for the requester and refunds the host a
    configured share of theirs.
    """
    settings = get_settings()
    requester_fee = to_money(requester_fee)
    host_fee = to_money(host_fee)
    hours = hours_until(start_date, now)

    if cancelled_by == ParticipantRole.HOST:
        percentage = settings.host_cancellation_refund_percentage
        requester_refund = percentage_of(requester_fee, percentage)
        host_refund = ZERO
    else:
        quote = calculate_refund(
            policy or CancellationPolicy.FLEXIBLE,
            amount=requester_fee,
            start_date=start_date,
            now=now,
        )
        percentage = quote.refund_percentage
        requester_refund = quote.refund_amount
        host_refund = percentage_of(
            host_fee, settings.requester_cancellation_host_refund_percentage
        )

    return CancellationPlan(
        cancelled_by=cancelled_by,
        policy=policy,
        refund_percentage=percentage,
        requester_fee=requester_fee,
        requester_refund=requester_refund,
        penalty_amount=requester_fee - requester_refund,
        host_fee=host_fee,
        host_refund=host_refund,
        hours_until_start=hours,
    )


def no_refund_plan(cancelled_by: ParticipantRole) -> CancellationPlan:
    """Plan for withdrawing a pending request: nothing was charged."""
    return CancellationPlan(
        cancelled_by=cancelled_by,
        policy=None,
        refund_percentage=0,
        requester_fee=ZERO,
        requester_refund=ZERO,
        penalty_amount=ZERO,
        host_fee=ZERO,
        host_refund=ZERO,
        hours_until_start=None,
    )
