"""Refund schedules for cancellations."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from fiesta.models import CancellationPolicy, ParticipantRole
from fiesta.services import cancellation_service

NOW = datetime(2026, 4, 1, 12, tzinfo=UTC)


@pytest.mark.parametrize(
    ("policy", "hours", "expected"),
    [
        (CancellationPolicy.FLEXIBLE, 24, 100),
        (CancellationPolicy.FLEXIBLE, 23, 0),
        (CancellationPolicy.MODERATE, 72, 100),
        (CancellationPolicy.MODERATE, 48, 50),
        (CancellationPolicy.MODERATE, 12, 0),
        (CancellationPolicy.STRICT, 168, 100),
        (CancellationPolicy.STRICT, 100, 50),
        (CancellationPolicy.STRICT, 71, 0),
        (CancellationPolicy.NON_REFUNDABLE, 1000, 0),
    ],
)
def test_refund_percentage_tiers(policy, hours, expected) -> None:
    assert cancellation_service.refund_percentage(policy, hours) == expected


def test_undated_booking_is_fully_refundable() -> None:
    assert cancellation_service.refund_percentage(CancellationPolicy.STRICT, None) == 100


def test_calculate_refund_splits_amount() -> None:
    quote = cancellation_service.calculate_refund(
        CancellationPolicy.MODERATE,
        amount=Decimal("45.00"),
        start_date=NOW + timedelta(hours=30),
        now=NOW,
    )
    assert quote.refund_percentage == 50
    assert quote.refund_amount == Decimal("22.50")
    assert quote.penalty_amount == Decimal("22.50")
    assert quote.hours_until_start == 30


def test_hours_until_accepts_naive_datetimes() -> None:
    naive_start = (NOW + timedelta(hours=5)).replace(tzinfo=None)
    assert cancellation_service.hours_until(naive_start, NOW) == 5


def test_host_cancellation_refunds_requester_fee_only() -> None:
    plan = cancellation_service.plan_cancellation(
        cancelled_by=ParticipantRole.HOST,
        policy=CancellationPolicy.NON_REFUNDABLE,
        start_date=NOW + timedelta(hours=2),
        requester_fee=Decimal("1.50"),
        host_fee=Decimal("1.50"),
        now=NOW,
    )
    assert plan.requester_refund == Decimal("1.50")
    assert plan.host_refund == Decimal("0.00")
    assert plan.penalty_amount == Decimal("0.00")
    assert plan.moves_money


def test_late_requester_cancellation_forfeits_fee() -> None:
    plan = cancellation_service.plan_cancellation(
        cancelled_by=ParticipantRole.REQUESTER,
        policy=CancellationPolicy.FLEXIBLE,
        start_date=NOW + timedelta(hours=3),
        requester_fee=Decimal("1.50"),
        host_fee=Decimal("1.50"),
        now=NOW,
    )
    assert plan.refund_percentage == 0
    assert plan.requester_refund == Decimal("0.00")
    assert plan.penalty_amount == Decimal("1.50")
    assert plan.host_refund == Decimal("1.50")


def test_requester_share_rounds_half_up() -> None:
    plan = cancellation_service.plan_cancellation(
        cancelled_by=ParticipantRole.REQUESTER,
        policy=CancellationPolicy.MODERATE,
        start_date=NOW + timedelta(hours=48),
        requester_fee=Decimal("1.25"),
        host_fee=Decimal("0"),
        now=NOW,
    )
    assert plan.requester_refund == Decimal("0.63")
    assert plan.penalty_amount == Decimal("0.62")
    assert not plan.host_refund


def test_no_refund_plan_moves_nothing() -> None:
    plan = cancellation_service.no_refund_plan(ParticipantRole.REQUESTER)
    assert not plan.moves_money
    assert plan.policy is None


def test_every_policy_is_described() -> None:
    for policy in CancellationPolicy:
        assert cancellation_service.describe_policy(policy)
