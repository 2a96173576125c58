"""Match lifecycle: requests, accept with fees, cancellations, completion."""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from fiesta.core.timeutils import utcnow
from fiesta.db.session import atomic, get_sessionmaker
from fiesta.models import (
    Cancellation,
    Experience,
    ExperienceType,
    Match,
    MatchStatus,
    ParticipantRole,
    TransactionType,
    User,
    WalletTransaction,
)
from fiesta.services import ledger_service, match_service
from fiesta.services.errors import (
    CapacityExceededError,
    DuplicateMatchError,
    FundingFailedError,
    InsufficientFundsError,
    InvalidTransitionError,
    PermissionDeniedError,
)

pytestmark = pytest.mark.asyncio


async def _balance(session, user_id: uuid.UUID) -> Decimal:
    user = await session.get(User, user_id, populate_existing=True)
    return user.wallet_balance


async def _fee_entries(session, match_id: uuid.UUID) -> list[WalletTransaction]:
    result = await session.execute(
        select(WalletTransaction).where(
            WalletTransaction.related_match_id == match_id,
            WalletTransaction.type == TransactionType.PLATFORM_FEE,
        )
    )
    return list(result.scalars().all())


async def _accepted_paid_match(session, marketplace, *, starts_in: timedelta) -> Match:
    match = await match_service.create_match(
        session,
        requester_id=marketplace["traveler_id"],
        experience_id=marketplace["paid_experience_id"],
        participants=2,
        start_date=utcnow() + starts_in,
    )
    return await match_service.accept_match(
        session, match_id=match.id, host_id=marketplace["host_id"]
    )


async def test_accept_charges_both_parties_once(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
            participants=2,
            start_date=utcnow() + timedelta(days=10),
            message="Two of us for the feria",
        )
        assert match.status == MatchStatus.PENDING
        assert match.total_price == Decimal("90.00")
        assert await _fee_entries(session, match.id) == []

        accepted = await match_service.accept_match(
            session, match_id=match.id, host_id=marketplace["host_id"]
        )
        assert accepted.status == MatchStatus.ACCEPTED
        assert accepted.accepted_at is not None

    async with sessionmaker() as session:
        assert await _balance(session, marketplace["host_id"]) == Decimal("8.50")
        assert await _balance(session, marketplace["traveler_id"]) == Decimal("8.50")
        entries = await _fee_entries(session, match.id)
        assert sorted(entry.user_id for entry in entries) == sorted(
            [marketplace["host_id"], marketplace["traveler_id"]]
        )
        assert all(entry.amount == Decimal("-1.50") for entry in entries)
        stored = await session.get(Match, match.id)
        assert stored.total_price == Decimal("90.00")


async def test_mixed_listing_charges_the_fee_pair(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        mixed = Experience(
            host_id=marketplace["host_id"],
            title="Room in Pamplona, pay or swap",
            experience_type=ExperienceType.MIXED,
            price_per_person=Decimal("20.00"),
            capacity=3,
        )
        session.add(mixed)
        await session.commit()

        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=mixed.id,
            participants=3,
        )
        assert match.total_price == Decimal("60.00")
        await match_service.accept_match(
            session, match_id=match.id, host_id=marketplace["host_id"]
        )

    async with sessionmaker() as session:
        entries = await _fee_entries(session, match.id)
        assert sorted(entry.user_id for entry in entries) == sorted(
            [marketplace["host_id"], marketplace["traveler_id"]]
        )
        assert await _balance(session, marketplace["traveler_id"]) == Decimal("8.50")


async def test_accept_with_short_requester_leaves_match_pending(
    marketplace, db_url: str
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
            participants=2,
        )
        # Spend down to 0.50 between the request and the accept.
        await ledger_service.debit(
            session,
            user_id=marketplace["traveler_id"],
            amount=Decimal("9.50"),
            type=TransactionType.PAYOUT,
        )
        await session.commit()

        with pytest.raises(FundingFailedError) as excinfo:
            await match_service.accept_match(
                session, match_id=match.id, host_id=marketplace["host_id"]
            )
        assert excinfo.value.details["short_parties"] == ["requester"]

    async with sessionmaker() as session:
        stored = await session.get(Match, match.id)
        assert stored.status == MatchStatus.PENDING
        assert await _fee_entries(session, match.id) == []
        assert await _balance(session, marketplace["host_id"]) == Decimal("10.00")
        assert await _balance(session, marketplace["traveler_id"]) == Decimal("0.50")


async def test_exchange_match_moves_no_money(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["broke_id"],
            experience_id=marketplace["exchange_experience_id"],
        )
        assert match.total_price is None
        accepted = await match_service.accept_match(
            session, match_id=match.id, host_id=marketplace["host_id"]
        )
        assert accepted.status == MatchStatus.ACCEPTED

    async with sessionmaker() as session:
        assert await _fee_entries(session, match.id) == []
        assert await _balance(session, marketplace["host_id"]) == Decimal("10.00")


async def test_paid_request_needs_a_funded_wallet(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        with pytest.raises(InsufficientFundsError):
            await match_service.create_match(
                session,
                requester_id=marketplace["broke_id"],
                experience_id=marketplace["paid_experience_id"],
            )


async def test_host_cannot_request_own_experience(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        with pytest.raises(PermissionDeniedError):
            await match_service.create_match(
                session,
                requester_id=marketplace["host_id"],
                experience_id=marketplace["paid_experience_id"],
            )


async def test_second_active_request_is_a_duplicate(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        first = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        with pytest.raises(DuplicateMatchError):
            await match_service.create_match(
                session,
                requester_id=marketplace["traveler_id"],
                experience_id=marketplace["paid_experience_id"],
            )
        await match_service.reject_match(
            session, match_id=first.id, host_id=marketplace["host_id"], reason="Full"
        )
        again = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        assert again.id != first.id


async def test_capacity_counts_overlapping_participants(marketplace, db_url: str) -> None:
    start = utcnow() + timedelta(days=20)
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        with pytest.raises(CapacityExceededError):
            await match_service.create_match(
                session,
                requester_id=marketplace["traveler_id"],
                experience_id=marketplace["exchange_experience_id"],
                participants=3,
            )
        await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["exchange_experience_id"],
            participants=2,
            start_date=start,
            end_date=start + timedelta(days=3),
        )
        with pytest.raises(CapacityExceededError):
            await match_service.create_match(
                session,
                requester_id=marketplace["broke_id"],
                experience_id=marketplace["exchange_experience_id"],
                start_date=start + timedelta(days=1),
                end_date=start + timedelta(days=2),
            )
        later = await match_service.create_match(
            session,
            requester_id=marketplace["broke_id"],
            experience_id=marketplace["exchange_experience_id"],
            start_date=start + timedelta(days=5),
        )
        assert later.status == MatchStatus.PENDING


async def test_only_the_host_accepts(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        with pytest.raises(PermissionDeniedError):
            await match_service.accept_match(
                session, match_id=match.id, host_id=marketplace["traveler_id"]
            )


async def test_accept_replayed_from_stale_session_charges_once(
    marketplace, db_url: str
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )

    async with sessionmaker() as first, sessionmaker() as second:
        seen = await match_service.get_match(second, match_id=match.id)
        assert seen.status == MatchStatus.PENDING

        await match_service.accept_match(
            first, match_id=match.id, host_id=marketplace["host_id"]
        )
        with pytest.raises(InvalidTransitionError):
            await match_service.accept_match(
                second, match_id=match.id, host_id=marketplace["host_id"]
            )

    async with sessionmaker() as session:
        assert len(await _fee_entries(session, match.id)) == 2
        assert await _balance(session, marketplace["host_id"]) == Decimal("8.50")


async def test_version_counter_rejects_stale_write(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["exchange_experience_id"],
        )

    async with sessionmaker() as first, sessionmaker() as second:
        stale = await second.get(Match, match.id)
        await match_service.reject_match(
            first, match_id=match.id, host_id=marketplace["host_id"]
        )

        stale.message = "Written over a rejected match"
        with pytest.raises(InvalidTransitionError):
            async with atomic(
                second, conflict_error=lambda: InvalidTransitionError("stale")
            ):
                pass

    async with sessionmaker() as session:
        stored = await session.get(Match, match.id)
        assert stored.status == MatchStatus.REJECTED
        assert stored.message is None


async def test_host_cancellation_refunds_requester_fee(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await _accepted_paid_match(
            session, marketplace, starts_in=timedelta(hours=3)
        )
        cancelled, cancellation = await match_service.cancel_match(
            session, match_id=match.id, user_id=marketplace["host_id"], reason="Sick"
        )
        assert cancelled.status == MatchStatus.CANCELLED
        assert cancellation.cancelled_by_role == ParticipantRole.HOST
        assert cancellation.refund_amount == Decimal("1.50")

    async with sessionmaker() as session:
        refunds = (
            await session.execute(
                select(WalletTransaction).where(
                    WalletTransaction.related_match_id == match.id,
                    WalletTransaction.type == TransactionType.REFUND,
                )
            )
        ).scalars().all()
        assert [(r.user_id, r.amount) for r in refunds] == [
            (marketplace["traveler_id"], Decimal("1.50"))
        ]
        assert await _balance(session, marketplace["traveler_id"]) == Decimal("10.00")
        assert await _balance(session, marketplace["host_id"]) == Decimal("8.50")


async def test_late_requester_cancellation_keeps_requester_fee(
    marketplace, db_url: str
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await _accepted_paid_match(
            session, marketplace, starts_in=timedelta(hours=3)
        )
        preview = await match_service.preview_cancellation(
            session, match_id=match.id, user_id=marketplace["traveler_id"]
        )
        assert preview.requester_refund == Decimal("0.00")
        assert preview.host_refund == Decimal("1.50")

        _, cancellation = await match_service.cancel_match(
            session, match_id=match.id, user_id=marketplace["traveler_id"]
        )
        assert cancellation.penalty_amount == Decimal("1.50")
        assert cancellation.host_refund_amount == Decimal("1.50")

    async with sessionmaker() as session:
        assert await _balance(session, marketplace["traveler_id"]) == Decimal("8.50")
        assert await _balance(session, marketplace["host_id"]) == Decimal("10.00")


async def test_withdrawing_a_pending_request(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        with pytest.raises(InvalidTransitionError):
            await match_service.cancel_match(
                session, match_id=match.id, user_id=marketplace["host_id"]
            )
        cancelled, cancellation = await match_service.cancel_match(
            session, match_id=match.id, user_id=marketplace["traveler_id"]
        )
        assert cancelled.status == MatchStatus.CANCELLED
        assert cancellation.previous_status == MatchStatus.PENDING
        assert cancellation.refund_amount == Decimal("0.00")

        with pytest.raises(InvalidTransitionError):
            await match_service.cancel_match(
                session, match_id=match.id, user_id=marketplace["traveler_id"]
            )

    async with sessionmaker() as session:
        stored = await match_service.get_cancellation(session, match_id=match.id)
        assert stored is not None
        assert len((await session.execute(select(Cancellation))).scalars().all()) == 1


async def test_complete_requires_start_unless_host_forces(
    marketplace, db_url: str
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await _accepted_paid_match(
            session, marketplace, starts_in=timedelta(days=2)
        )
        with pytest.raises(InvalidTransitionError):
            await match_service.complete_match(
                session, match_id=match.id, actor_id=marketplace["host_id"]
            )
        with pytest.raises(InvalidTransitionError):
            await match_service.complete_match(
                session,
                match_id=match.id,
                actor_id=marketplace["traveler_id"],
                force=True,
            )
        completed = await match_service.complete_match(
            session,
            match_id=match.id,
            now=utcnow() + timedelta(days=3),
        )
        assert completed.status == MatchStatus.COMPLETED
        assert completed.closed_at is not None

        with pytest.raises(InvalidTransitionError):
            await match_service.cancel_match(
                session, match_id=match.id, user_id=marketplace["host_id"]
            )


async def test_both_confirmations_complete_the_match(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await _accepted_paid_match(
            session, marketplace, starts_in=timedelta(days=2)
        )
        half = await match_service.confirm_completion(
            session, match_id=match.id, user_id=marketplace["traveler_id"]
        )
        assert half.status == MatchStatus.ACCEPTED
        assert half.requester_confirmed and not half.host_confirmed

        with pytest.raises(InvalidTransitionError):
            await match_service.confirm_completion(
                session, match_id=match.id, user_id=marketplace["traveler_id"]
            )

        done = await match_service.confirm_completion(
            session, match_id=match.id, user_id=marketplace["host_id"]
        )
        assert done.status == MatchStatus.COMPLETED


async def test_match_stats_split_by_side(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        await match_service.reject_match(
            session, match_id=match.id, host_id=marketplace["host_id"]
        )
        await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["exchange_experience_id"],
        )
        host_stats = await match_service.match_stats(
            session, user_id=marketplace["host_id"]
        )
        traveler_stats = await match_service.match_stats(
            session, user_id=marketplace["traveler_id"]
        )
    assert host_stats["as_host"]["rejected"] == 1
    assert host_stats["as_host"]["pending"] == 1
    assert sum(host_stats["as_requester"].values()) == 0
    assert traveler_stats["as_requester"]["pending"] == 1
