"""Server-side expiry of stale pending requests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from fiesta.core.timeutils import utcnow
from fiesta.db.session import get_sessionmaker
from fiesta.models import Match, MatchStatus
from fiesta.services import match_service

pytestmark = pytest.mark.asyncio


async def test_sweep_rejects_only_old_pending_matches(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        stale = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        fresh = await match_service.create_match(
            session,
            requester_id=marketplace["broke_id"],
            experience_id=marketplace["exchange_experience_id"],
        )
        accepted = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["exchange_experience_id"],
        )
        await match_service.accept_match(
            session, match_id=accepted.id, host_id=marketplace["host_id"]
        )

        old = utcnow() - timedelta(hours=49)
        await session.execute(
            update(Match)
            .where(Match.id.in_([stale.id, accepted.id]))
            .values(created_at=old)
        )
        await session.commit()

        expired = await match_service.expire_pending_matches(session)
        assert [match.id for match in expired] == [stale.id]

    async with sessionmaker() as session:
        stored = await session.get(Match, stale.id)
        assert stored.status == MatchStatus.REJECTED
        assert stored.rejection_reason == match_service.EXPIRED_REASON
        assert (await session.get(Match, fresh.id)).status == MatchStatus.PENDING
        assert (await session.get(Match, accepted.id)).status == MatchStatus.ACCEPTED

        # Running the sweep again finds nothing left to do.
        assert await match_service.expire_pending_matches(session) == []


async def test_sweep_uses_reference_time(marketplace, db_url: str) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        match = await match_service.create_match(
            session,
            requester_id=marketplace["traveler_id"],
            experience_id=marketplace["paid_experience_id"],
        )
        assert await match_service.expire_pending_matches(session) == []
        expired = await match_service.expire_pending_matches(
            session, now=utcnow() + timedelta(hours=48, minutes=1)
        )
        assert [item.id for item in expired] == [match.id]
