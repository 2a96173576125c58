"""Wallet top-ups, fee charging and the can-operate gate."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from fiesta.db.session import get_sessionmaker
from fiesta.models import TransactionType, User, WalletTransaction
from fiesta.services import ledger_service, wallet_service
from fiesta.services.errors import (
    BelowMinimumError,
    DuplicateReferenceError,
    FundingFailedError,
)

pytestmark = pytest.mark.asyncio


async def _entries(session, user_id: uuid.UUID) -> list[WalletTransaction]:
    result = await session.execute(
        select(WalletTransaction).where(WalletTransaction.user_id == user_id)
    )
    return list(result.scalars().all())


async def test_top_up_below_minimum_is_rejected(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        with pytest.raises(BelowMinimumError) as excinfo:
            await wallet_service.top_up(
                session, user_id=marketplace["broke_id"], amount=Decimal("4.49")
            )
        assert excinfo.value.details["minimum"] == "4.50"
        assert await _entries(session, marketplace["broke_id"]) == []


async def test_top_up_at_minimum_credits_wallet(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        entry = await wallet_service.top_up(
            session, user_id=marketplace["broke_id"], amount=Decimal("4.50")
        )
        assert entry.type == TransactionType.TOPUP
        assert entry.balance_after == Decimal("4.50")

    async with sessionmaker() as session:
        assert await wallet_service.can_operate(session, user_id=marketplace["broke_id"])


async def test_top_up_replay_with_same_reference_credits_once(
    marketplace, db_url: str
) -> None:
    user_id = marketplace["broke_id"]
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        first = await wallet_service.top_up(
            session, user_id=user_id, amount=Decimal("20"), external_reference="pi_123"
        )
    async with sessionmaker() as session:
        replay = await wallet_service.top_up(
            session, user_id=user_id, amount=Decimal("20.00"), external_reference="pi_123"
        )
        assert replay.id == first.id

    async with sessionmaker() as session:
        user = await session.get(User, user_id)
        assert user.wallet_balance == Decimal("20.00")
        assert len(await _entries(session, user_id)) == 1


async def test_top_up_reference_reused_for_other_amount_conflicts(
    marketplace, db_url: str
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        await wallet_service.top_up(
            session,
            user_id=marketplace["broke_id"],
            amount=Decimal("20.00"),
            external_reference="pi_456",
        )
        with pytest.raises(DuplicateReferenceError):
            await wallet_service.top_up(
                session,
                user_id=marketplace["broke_id"],
                amount=Decimal("25.00"),
                external_reference="pi_456",
            )


async def test_can_operate_needs_one_platform_fee(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        assert await wallet_service.can_operate(session, user_id=marketplace["traveler_id"])
        assert not await wallet_service.can_operate(session, user_id=marketplace["broke_id"])

        await ledger_service.debit(
            session,
            user_id=marketplace["traveler_id"],
            amount=Decimal("8.50"),
            type=TransactionType.PLATFORM_FEE,
        )
        await session.commit()
        # Exactly one fee left is still enough.
        assert await wallet_service.can_operate(session, user_id=marketplace["traveler_id"])


async def test_charge_platform_fee_is_all_or_nothing(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        with pytest.raises(FundingFailedError) as excinfo:
            await wallet_service.charge_platform_fee(
                session,
                host_id=marketplace["host_id"],
                requester_id=marketplace["broke_id"],
                match_id=uuid.uuid4(),
            )
        await session.rollback()
        assert excinfo.value.details["short_parties"] == ["requester"]

    async with sessionmaker() as session:
        host = await session.get(User, marketplace["host_id"])
        assert host.wallet_balance == Decimal("10.00")
        assert len(await _entries(session, marketplace["host_id"])) == 1


async def test_get_wallet_summary(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        summary = await wallet_service.get_wallet(session, user_id=marketplace["host_id"])
    assert summary.balance == Decimal("10.00")
    assert summary.currency == "EUR"
    assert summary.platform_fee == Decimal("1.50")
    assert summary.can_operate is True
    assert summary.frozen is False
