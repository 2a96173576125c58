"""Match state machine.

Every transition loads the match with a row lock and re-checks its status
inside the same transaction, and the ``version`` counter catches anything that
slipped past the lock. Money moves in the same transaction as the status flip:
an accept never commits without its fee pair and a fee is never charged
without the accept.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.config import get_settings
from fiesta.core.money import ZERO, to_money
from fiesta.core.timeutils import coerce_utc, utcnow
from fiesta.db.session import atomic
from fiesta.models import (
    Cancellation,
    Match,
    MatchStatus,
    ParticipantRole,
    User,
)
from fiesta.services import (
    cancellation_service,
    experience_service,
    ledger_service,
    trust_service,
    wallet_service,
)
from fiesta.services.cancellation_service import CancellationPlan
from fiesta.services.errors import (
    CapacityExceededError,
    DuplicateMatchError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

_ALLOWED_STATUS_TRANSITIONS: dict[MatchStatus, set[MatchStatus]] = {
    MatchStatus.PENDING: {
        MatchStatus.ACCEPTED,
        MatchStatus.REJECTED,
        MatchStatus.CANCELLED,
    },
    MatchStatus.ACCEPTED: {MatchStatus.COMPLETED, MatchStatus.CANCELLED},
    MatchStatus.REJECTED: set(),
    MatchStatus.CANCELLED: set(),
    MatchStatus.COMPLETED: set(),
}

ACTIVE_MATCH_STATUSES = frozenset({MatchStatus.PENDING, MatchStatus.ACCEPTED})

EXPIRED_REASON = "expired"


def _ensure_transition(match: Match, target: MatchStatus) -> None:
    if target not in _ALLOWED_STATUS_TRANSITIONS[match.status]:
        raise InvalidTransitionError(
            f"Cannot move match from {match.status.value} to {target.value}",
            match_id=match.id,
            status=match.status.value,
            target=target.value,
        )


def _concurrent_change() -> InvalidTransitionError:
    return InvalidTransitionError("Match was modified concurrently")


def _participant_role(match: Match, user_id: uuid.UUID) -> ParticipantRole:
    role = match.role_of(user_id)
    if role is None:
        raise PermissionDeniedError(
            "Only the host or the requester can act on this match", match_id=match.id
        )
    return role


def _validate_dates(start_date: datetime | None, end_date: datetime | None) -> None:
    if start_date is not None and end_date is not None:
        if coerce_utc(end_date) < coerce_utc(start_date):
            raise ValueError("End date must not be before start date")


async def lock_match(session: AsyncSession, match_id: uuid.UUID) -> Match:
    """Load the match with a row lock, discarding any stale in-memory copy."""
    result = await session.execute(
        select(Match)
        .where(Match.id == match_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise NotFoundError("Match not found", match_id=match_id)
    return match


async def _ensure_capacity(
    session: AsyncSession,
    *,
    terms: experience_service.ExperienceTerms,
    participants: int,
    start_date: datetime | None,
    end_date: datetime | None,
) -> None:
    if participants > terms.capacity:
        raise CapacityExceededError(
            f"This experience takes at most {terms.capacity} participants",
            capacity=terms.capacity,
            requested=participants,
        )
    if start_date is None:
        return

    window_end = end_date or start_date
    overlapping = await session.scalar(
        select(func.coalesce(func.sum(Match.participants), 0)).where(
            Match.experience_id == terms.id,
            Match.status.in_(ACTIVE_MATCH_STATUSES),
            Match.start_date.is_not(None),
            Match.start_date <= window_end,
            or_(
                Match.end_date >= start_date,
                Match.end_date.is_(None) & (Match.start_date >= start_date),
            ),
        )
    )
    taken = int(overlapping or 0)
    if taken + participants > terms.capacity:
        raise CapacityExceededError(
            "Not enough places left for those dates",
            capacity=terms.capacity,
            taken=taken,
            requested=participants,
        )


async def create_match(
    session: AsyncSession,
    *,
    requester_id: uuid.UUID,
    experience_id: uuid.UUID,
    participants: int = 1,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    message: str | None = None,
) -> Match:
    """Open a pending request. No money moves yet."""
    if participants < 1:
        raise ValueError("At least one participant is required")
    _validate_dates(start_date, end_date)

    terms = await experience_service.get_terms(session, experience_id=experience_id)
    if not terms.published:
        raise NotFoundError("Experience is not available", experience_id=experience_id)
    if terms.host_id == requester_id:
        raise PermissionDeniedError("Hosts cannot request their own experience")

    try:
        async with atomic(session, conflict_error=_concurrent_change):
            # Locking the requester orders this insert against a concurrent ban.
            requester = (await ledger_service.lock_users(session, [requester_id]))[
                requester_id
            ]
            trust_service.ensure_not_banned(requester, role="requester")
            if terms.charges_platform_fee and not await wallet_service.can_operate(
                session, user_id=requester_id
            ):
                raise InsufficientFundsError(
                    "Top up your wallet to cover the platform fee before requesting",
                    platform_fee=wallet_service.platform_fee(),
                )

            duplicate = await session.scalar(
                select(Match.id).where(
                    Match.experience_id == experience_id,
                    Match.requester_id == requester_id,
                    Match.status.in_(ACTIVE_MATCH_STATUSES),
                )
            )
            if duplicate is not None:
                raise DuplicateMatchError(
                    "You already have an active request for this experience",
                    match_id=duplicate,
                )
            await _ensure_capacity(
                session,
                terms=terms,
                participants=participants,
                start_date=start_date,
                end_date=end_date,
            )

            match = Match(
                experience_id=experience_id,
                host_id=terms.host_id,
                requester_id=requester_id,
                status=MatchStatus.PENDING,
                participants=participants,
                total_price=experience_service.quote_total(terms, participants),
                message=message,
                start_date=start_date,
                end_date=end_date,
            )
            session.add(match)
    except IntegrityError as exc:
        raise DuplicateMatchError(
            "You already have an active request for this experience"
        ) from exc

    await session.refresh(match)
    logger.info(
        "Match %s requested by %s for experience %s", match.id, requester_id, experience_id
    )
    return match


async def accept_match(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    host_id: uuid.UUID,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> Match:
    """Accept a pending match and charge both platform fees atomically.

    A funding failure leaves the match pending and raises
    ``FundingFailedError`` so the caller can prompt for a top-up.
    """
    _validate_dates(start_date, end_date)
    async with atomic(session, conflict_error=_concurrent_change):
        match = await lock_match(session, match_id)
        if match.host_id != host_id:
            raise PermissionDeniedError("Only the host can accept this match")
        _ensure_transition(match, MatchStatus.ACCEPTED)

        users = await ledger_service.lock_users(
            session, [match.host_id, match.requester_id]
        )
        trust_service.ensure_not_banned(users[match.host_id], role="host")
        trust_service.ensure_not_banned(users[match.requester_id], role="requester")

        terms = await experience_service.get_terms(
            session, experience_id=match.experience_id
        )
        if start_date is not None:
            match.start_date = start_date
        if end_date is not None:
            match.end_date = end_date
        if terms.charges_platform_fee:
            requester = users[match.requester_id]
            host = users[match.host_id]
            await wallet_service.charge_platform_fee(
                session,
                host_id=match.host_id,
                requester_id=match.requester_id,
                match_id=match.id,
                description=f"{terms.title} · {requester.full_name} / {host.full_name}",
            )

        match.status = MatchStatus.ACCEPTED
        match.accepted_at = utcnow()

    logger.info("Match %s accepted by host %s", match_id, host_id)
    return match


async def reject_match(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    host_id: uuid.UUID,
    reason: str | None = None,
) -> Match:
    async with atomic(session, conflict_error=_concurrent_change):
        match = await lock_match(session, match_id)
        if match.host_id != host_id:
            raise PermissionDeniedError("Only the host can reject this match")
        _ensure_transition(match, MatchStatus.REJECTED)
        match.status = MatchStatus.REJECTED
        match.rejection_reason = reason
        match.closed_at = utcnow()

    logger.info("Match %s rejected by host %s", match_id, host_id)
    return match


async def _plan_for(
    session: AsyncSession, match: Match, role: ParticipantRole
) -> CancellationPlan:
    if match.status != MatchStatus.ACCEPTED:
        return cancellation_service.no_refund_plan(role)
    terms = await experience_service.get_terms(
        session, experience_id=match.experience_id
    )
    requester_fee = await wallet_service.fee_charged_for(
        session, match_id=match.id, user_id=match.requester_id
    )
    host_fee = await wallet_service.fee_charged_for(
        session, match_id=match.id, user_id=match.host_id
    )
    return cancellation_service.plan_cancellation(
        cancelled_by=role,
        policy=terms.cancellation_policy,
        start_date=match.start_date,
        requester_fee=requester_fee,
        host_fee=host_fee,
    )


async def cancel_match(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    user_id: uuid.UUID,
    reason: str | None = None,
) -> tuple[Match, Cancellation]:
    """Cancel a match, refunding fees per the cancellation plan.

    A pending request can only be withdrawn by its requester (hosts reject
    instead). An accepted match can be cancelled by either party.
    """
    async with atomic(session, conflict_error=_concurrent_change):
        match = await lock_match(session, match_id)
        role = _participant_role(match, user_id)
        _ensure_transition(match, MatchStatus.CANCELLED)
        if match.status == MatchStatus.PENDING and role != ParticipantRole.REQUESTER:
            raise InvalidTransitionError(
                "A pending request is rejected by the host, not cancelled",
                match_id=match.id,
                status=match.status.value,
            )

        previous_status = match.status
        plan = await _plan_for(session, match, role)
        if plan.moves_money:
            await ledger_service.lock_users(
                session, [match.host_id, match.requester_id]
            )
        if plan.requester_refund > ZERO:
            await wallet_service.refund(
                session,
                user_id=match.requester_id,
                amount=plan.requester_refund,
                match_id=match.id,
                reason=f"Cancellation refund ({plan.refund_percentage}%)",
                counterparty_id=match.host_id,
            )
        if plan.host_refund > ZERO:
            await wallet_service.refund(
                session,
                user_id=match.host_id,
                amount=plan.host_refund,
                match_id=match.id,
                reason="Platform fee returned after requester cancellation",
                counterparty_id=match.requester_id,
            )

        cancellation = Cancellation(
            match_id=match.id,
            cancelled_by_id=user_id,
            cancelled_by_role=role,
            previous_status=previous_status,
            reason=reason,
            policy=plan.policy,
            refund_percentage=plan.refund_percentage,
            fee_amount=plan.requester_fee,
            refund_amount=plan.requester_refund,
            penalty_amount=plan.penalty_amount,
            host_refund_amount=plan.host_refund,
            hours_until_start=plan.hours_until_start,
        )
        session.add(cancellation)
        match.status = MatchStatus.CANCELLED
        match.closed_at = utcnow()

    logger.info(
        "Match %s cancelled by %s (%s); requester refund %s, host refund %s",
        match_id,
        user_id,
        role.value,
        plan.requester_refund,
        plan.host_refund,
    )
    return match, cancellation


async def preview_cancellation(
    session: AsyncSession, *, match_id: uuid.UUID, user_id: uuid.UUID
) -> CancellationPlan:
    """What ``cancel_match`` would refund if this user cancelled now."""
    match = await get_match(session, match_id=match_id, user_id=user_id)
    role = _participant_role(match, user_id)
    _ensure_transition(match, MatchStatus.CANCELLED)
    return await _plan_for(session, match, role)


async def complete_match(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> Match:
    """Mark an accepted match completed once it has started.

    ``actor_id=None`` is the system. Only the host may ``force`` completion
    before the start date.
    """
    current = now or utcnow()
    async with atomic(session, conflict_error=_concurrent_change):
        match = await lock_match(session, match_id)
        role = _participant_role(match, actor_id) if actor_id is not None else None
        _ensure_transition(match, MatchStatus.COMPLETED)

        started = match.start_date is not None and coerce_utc(match.start_date) <= current
        if not started and not (force and role == ParticipantRole.HOST):
            raise InvalidTransitionError(
                "The experience has not started yet",
                match_id=match.id,
                status=match.status.value,
            )
        match.status = MatchStatus.COMPLETED
        match.closed_at = current

    logger.info("Match %s completed (actor=%s, force=%s)", match_id, actor_id, force)
    return match


async def confirm_completion(
    session: AsyncSession, *, match_id: uuid.UUID, user_id: uuid.UUID
) -> Match:
    """Record one side's confirmation; the match completes when both agree."""
    async with atomic(session, conflict_error=_concurrent_change):
        match = await lock_match(session, match_id)
        role = _participant_role(match, user_id)
        if match.status != MatchStatus.ACCEPTED:
            _ensure_transition(match, MatchStatus.COMPLETED)
        already_confirmed = (
            match.host_confirmed
            if role == ParticipantRole.HOST
            else match.requester_confirmed
        )
        if already_confirmed:
            raise InvalidTransitionError(
                "You have already confirmed this match",
                match_id=match.id,
                status=match.status.value,
            )
        if role == ParticipantRole.HOST:
            match.host_confirmed = True
        else:
            match.requester_confirmed = True
        if match.host_confirmed and match.requester_confirmed:
            match.status = MatchStatus.COMPLETED
            match.closed_at = utcnow()

    logger.info(
        "Match %s completion confirmed by %s (%s)", match_id, user_id, role.value
    )
    return match


async def expire_pending_matches(
    session: AsyncSession, *, now: datetime | None = None
) -> list[Match]:
    """Reject pending matches older than the configured TTL.

    Safe to re-run: each match is re-checked under its own lock and skipped if
    someone else moved it first.
    """
    current = now or utcnow()
    cutoff = current - timedelta(hours=get_settings().pending_match_ttl_hours)
    candidate_ids = (
        await session.execute(
            select(Match.id)
            .where(Match.status == MatchStatus.PENDING, Match.created_at <= cutoff)
            .order_by(Match.created_at)
        )
    ).scalars().all()

    expired: list[Match] = []
    for match_id in candidate_ids:
        try:
            async with atomic(session, conflict_error=_concurrent_change):
                match = await lock_match(session, match_id)
                if match.status != MatchStatus.PENDING:
                    continue
                match.status = MatchStatus.REJECTED
                match.rejection_reason = EXPIRED_REASON
                match.closed_at = current
            expired.append(match)
        except InvalidTransitionError:
            logger.info("Match %s changed during expiry sweep; skipped", match_id)

    if expired:
        logger.info("Expired %d pending match(es)", len(expired))
    return expired


async def get_match(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> Match:
    """Return a match; with ``user_id`` the caller must be a participant."""
    match = await session.get(Match, match_id, populate_existing=True)
    if match is None:
        raise NotFoundError("Match not found", match_id=match_id)
    if user_id is not None:
        _participant_role(match, user_id)
    return match


async def get_cancellation(
    session: AsyncSession, *, match_id: uuid.UUID
) -> Cancellation | None:
    result = await session.execute(
        select(Cancellation).where(Cancellation.match_id == match_id)
    )
    return result.scalar_one_or_none()


async def list_user_cancellations(
    session: AsyncSession, *, user_id: uuid.UUID
) -> Sequence[Cancellation]:
    """Cancellations the user made, newest first."""
    result = await session.execute(
        select(Cancellation)
        .where(Cancellation.cancelled_by_id == user_id)
        .order_by(Cancellation.created_at.desc())
    )
    return result.scalars().all()


async def cancellation_stats(
    session: AsyncSession, *, user_id: uuid.UUID, now: datetime | None = None
) -> dict[str, object]:
    current = now or utcnow()
    by_role = {role.value: 0 for role in ParticipantRole}
    rows = await session.execute(
        select(Cancellation.cancelled_by_role, func.count())
        .where(Cancellation.cancelled_by_id == user_id)
        .group_by(Cancellation.cancelled_by_role)
    )
    for role, count in rows.all():
        by_role[role.value] = int(count)

    last_30_days = await session.scalar(
        select(func.count())
        .select_from(Cancellation)
        .where(
            Cancellation.cancelled_by_id == user_id,
            Cancellation.created_at >= current - timedelta(days=30),
        )
    )
    total_refunded = await session.scalar(
        select(
            func.coalesce(
                func.sum(Cancellation.refund_amount + Cancellation.host_refund_amount),
                0,
            )
        ).where(Cancellation.cancelled_by_id == user_id)
    )
    return {
        "total": sum(by_role.values()),
        "as_host": by_role[ParticipantRole.HOST.value],
        "as_requester": by_role[ParticipantRole.REQUESTER.value],
        "last_30_days": int(last_30_days or 0),
        "total_refunded": to_money(total_refunded or 0),
    }


async def list_received(
    session: AsyncSession,
    *,
    host_id: uuid.UUID,
    status: MatchStatus | None = None,
) -> Sequence[Match]:
    stmt = select(Match).where(Match.host_id == host_id)
    if status is not None:
        stmt = stmt.where(Match.status == status)
    result = await session.execute(stmt.order_by(Match.created_at.desc()))
    return result.scalars().all()


async def list_sent(
    session: AsyncSession,
    *,
    requester_id: uuid.UUID,
    status: MatchStatus | None = None,
) -> Sequence[Match]:
    stmt = select(Match).where(Match.requester_id == requester_id)
    if status is not None:
        stmt = stmt.where(Match.status == status)
    result = await session.execute(stmt.order_by(Match.created_at.desc()))
    return result.scalars().all()


async def list_matches(
    session: AsyncSession,
    *,
    status: MatchStatus | None = None,
    user_id: uuid.UUID | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Match], int]:
    """Admin listing across all users."""
    filters = []
    if status is not None:
        filters.append(Match.status == status)
    if user_id is not None:
        filters.append(or_(Match.host_id == user_id, Match.requester_id == user_id))
    page = max(page, 1)
    total = await session.scalar(select(func.count()).select_from(Match).where(*filters))
    result = await session.execute(
        select(Match)
        .where(*filters)
        .order_by(Match.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), int(total or 0)


async def match_stats(
    session: AsyncSession, *, user_id: uuid.UUID
) -> dict[str, dict[str, int]]:
    """Match counts by status, split by the side the user is on."""
    stats: dict[str, dict[str, int]] = {}
    for label, column in (("as_host", Match.host_id), ("as_requester", Match.requester_id)):
        counts = {status.value: 0 for status in MatchStatus}
        rows = await session.execute(
            select(Match.status, func.count())
            .where(column == user_id)
            .group_by(Match.status)
        )
        for status, count in rows.all():
            counts[status.value] = int(count)
        stats[label] = counts
    return stats


async def participant_emails(session: AsyncSession, match: Match) -> dict[str, str]:
    """Email address per side of the match, for notifications."""
    rows = await session.execute(
        select(User.id, User.email).where(User.id.in_([match.host_id, match.requester_id]))
    )
    by_id = {row.id: row.email for row in rows.all()}
    return {
        ParticipantRole.HOST.value: by_id.get(match.host_id, ""),
        ParticipantRole.REQUESTER.value: by_id.get(match.requester_id, ""),
    }
