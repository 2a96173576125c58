"""Strikes, bans and their enforcement on matches."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from fiesta.db.session import get_sessionmaker
from fiesta.models import AuditEvent, Match, MatchStatus, User
from fiesta.services import match_service, trust_service
from fiesta.services.errors import TrustConflictError, UserBannedError

pytestmark = pytest.mark.asyncio


async def test_third_strike_bans_the_user(marketplace, db_url: str) -> None:
    user_id = marketplace["traveler_id"]
    admin_id = marketplace["admin_id"]
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        for number in range(1, 3):
            user = await trust_service.add_strike(
                session, user_id=user_id, admin_id=admin_id, reason=f"Late #{number}"
            )
            assert user.strikes == number
            assert not user.is_banned
        user = await trust_service.add_strike(
            session, user_id=user_id, admin_id=admin_id, reason="Late #3"
        )
        assert user.strikes == 3
        assert user.is_banned
        assert "3 strikes" in user.ban_reason

    async with sessionmaker() as session:
        stored = await session.get(User, user_id)
        assert stored.banned_at is not None
        events = (
            await session.execute(
                select(AuditEvent).where(AuditEvent.event_type == "trust.strike_added")
            )
        ).scalars().all()
        assert len(events) == 3
        assert all(event.user_id == admin_id for event in events)


async def test_banned_user_cannot_take_more_strikes(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        await trust_service.ban_user(
            session,
            user_id=marketplace["traveler_id"],
            admin_id=marketplace["admin_id"],
            reason="Fraud",
        )
        with pytest.raises(TrustConflictError):
            await trust_service.add_strike(
                session,
                user_id=marketplace["traveler_id"],
                admin_id=marketplace["admin_id"],
                reason="Again",
            )
        with pytest.raises(TrustConflictError):
            await trust_service.ban_user(
                session,
                user_id=marketplace["traveler_id"],
                admin_id=marketplace["admin_id"],
                reason="Twice",
            )

    async with sessionmaker() as session:
        stored = await session.get(User, marketplace["traveler_id"])
        assert stored.strikes == 0
        assert stored.ban_reason == "Fraud"


async def test_unban_resets_strikes(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        for _ in range(3):
            await trust_service.add_strike(
                session,
                user_id=marketplace["traveler_id"],
                admin_id=marketplace["admin_id"],
                reason="No-show",
            )
        user = await trust_service.unban_user(
            session, user_id=marketplace["traveler_id"], admin_id=marketplace["admin_id"]
        )
        assert user.strikes == 0
        assert not user.is_banned

        with pytest.raises(TrustConflictError):
            await trust_service.unban_user(
                session,
                user_id=marketplace["traveler_id"],
                admin_id=marketplace["admin_id"],
            )


async def test_remove_strike_floors_at_zero(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        user = await trust_service.remove_strike(
            session, user_id=marketplace["host_id"], admin_id=marketplace["admin_id"]
        )
        assert user.strikes == 0


async def test_banned_requester_cannot_create_matches(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        await trust_service.ban_user(
            session,
            user_id=marketplace["traveler_id"],
            admin_id=marketplace["admin_id"],
            reason="Abuse",
        )
        with pytest.raises(UserBannedError):
            await match_service.create_match(
                session,
                requester_id=marketplace["traveler_id"],
                experience_id=marketplace["paid_experience_id"],
            )

    async with sessionmaker() as session:
        count = len((await session.execute(select(Match))).scalars().all())
        assert count == 0


async def test_banned_host_cannot_accept(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["exchange_experience_id"],
        )
        await trust_service.ban_user(
            session,
            user_id=marketplace["host_id"],
            admin_id=marketplace["admin_id"],
            reason="Fake listings",
        )
        with pytest.raises(UserBannedError) as excinfo:
            await match_service.accept_match(
                session, match_id=match.id, host_id=marketplace["host_id"]
            )
        assert excinfo.value.details["role"] == "host"

    async with sessionmaker() as session:
        stored = await session.get(Match, match.id)
        assert stored.status == MatchStatus.PENDING


async def test_list_banned_users(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        await trust_service.ban_user(
            session,
            user_id=marketplace["broke_id"],
            admin_id=marketplace["admin_id"],
            reason="Spam",
        )
        users, total = await trust_service.list_banned_users(session)
    assert total == 1
    assert users[0].id == marketplace["broke_id"]


async def test_ban_committed_first_stops_a_stale_request(
    marketplace, db_url: str
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as first, sessionmaker() as second:
        stale = await second.get(User, marketplace["traveler_id"])
        assert stale.banned_at is None

        await trust_service.ban_user(
            first,
            user_id=marketplace["traveler_id"],
            admin_id=marketplace["admin_id"],
            reason="Chargeback fraud",
        )
        with pytest.raises(UserBannedError):
            await match_service.create_match(
                second,
                requester_id=marketplace["traveler_id"],
                experience_id=marketplace["exchange_experience_id"],
            )

    async with sessionmaker() as session:
        assert (await session.execute(select(Match))).scalars().all() == []
