"""User trust: strikes, bans and the checks that enforce them."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.config import get_settings
from fiesta.core.timeutils import utcnow
from fiesta.db.session import atomic
from fiesta.models import User
from fiesta.services import audit_service, ledger_service
from fiesta.services.errors import TrustConflictError, UserBannedError

logger = logging.getLogger(__name__)


def ensure_not_banned(user: User, *, role: str = "user") -> None:
    if user.banned_at is not None:
        raise UserBannedError(
            f"The {role} account is banned", user_id=user.id, role=role
        )


def apply_ban(user: User, *, reason: str) -> None:
    """Ban a locked user row in the current transaction."""
    if user.banned_at is not None:
        raise TrustConflictError("User is already banned", user_id=user.id)
    user.banned_at = utcnow()
    user.ban_reason = reason
    logger.info("User %s banned: %s", user.id, reason)


def apply_strike(user: User, *, reason: str) -> bool:
    """Add a strike to a locked user row; returns True when it triggered a ban."""
    if user.banned_at is not None:
        raise TrustConflictError("User is already banned", user_id=user.id)
    max_strikes = get_settings().max_strikes
    user.strikes = (user.strikes or 0) + 1
    logger.info("Strike %s/%s for user %s", user.strikes, max_strikes, user.id)
    if user.strikes >= max_strikes:
        apply_ban(user, reason=f"Reached {max_strikes} strikes: {reason}")
        return True
    return False


async def add_strike(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    admin_id: uuid.UUID,
    reason: str,
) -> User:
    async with atomic(session, conflict_error=_concurrent_change):
        user = (await ledger_service.lock_users(session, [user_id]))[user_id]
        banned = apply_strike(user, reason=reason)
        await audit_service.record_event(
            session,
            event_type="trust.strike_added",
            user_id=admin_id,
            description=reason,
            payload={
                "target_user_id": str(user_id),
                "strikes": user.strikes,
                "banned": banned,
            },
            commit=False,
        )
    return user


async def remove_strike(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    admin_id: uuid.UUID,
) -> User:
    """Remove one strike (floored at zero). Does not lift a ban."""
    async with atomic(session, conflict_error=_concurrent_change):
        user = (await ledger_service.lock_users(session, [user_id]))[user_id]
        user.strikes = max((user.strikes or 0) - 1, 0)
        await audit_service.record_event(
            session,
            event_type="trust.strike_removed",
            user_id=admin_id,
            payload={"target_user_id": str(user_id), "strikes": user.strikes},
            commit=False,
        )
    return user


async def ban_user(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    admin_id: uuid.UUID,
    reason: str,
) -> User:
    async with atomic(session, conflict_error=_concurrent_change):
        user = (await ledger_service.lock_users(session, [user_id]))[user_id]
        apply_ban(user, reason=reason)
        await audit_service.record_event(
            session,
            event_type="trust.user_banned",
            user_id=admin_id,
            description=reason,
            payload={"target_user_id": str(user_id)},
            commit=False,
        )
    return user


async def unban_user(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    admin_id: uuid.UUID,
) -> User:
    """Lift a ban and reset strikes to zero."""
    async with atomic(session, conflict_error=_concurrent_change):
        user = (await ledger_service.lock_users(session, [user_id]))[user_id]
        if user.banned_at is None:
            raise TrustConflictError("User is not banned", user_id=user_id)
        user.banned_at = None
        user.ban_reason = None
        user.strikes = 0
        await audit_service.record_event(
            session,
            event_type="trust.user_unbanned",
            user_id=admin_id,
            payload={"target_user_id": str(user_id)},
            commit=False,
        )
    logger.info("User %s unbanned by %s", user_id, admin_id)
    return user


async def list_banned_users(
    session: AsyncSession, *, page: int = 1, page_size: int = 20
) -> tuple[list[User], int]:
    page = max(page, 1)
    total = await session.scalar(
        select(func.count()).select_from(User).where(User.banned_at.is_not(None))
    )
    result = await session.execute(
        select(User)
        .where(User.banned_at.is_not(None))
        .order_by(User.banned_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), int(total or 0)


def _concurrent_change() -> TrustConflictError:
    return TrustConflictError("User was modified concurrently; retry")
