"""Dispute lifecycle and resolution.

Resolving a dispute is a single unit of work: refund, penalty, status flip
and audit record commit together or not at all. The dispute row is locked
first, then its match, then the affected users in id order.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fiesta.core.config import get_settings
from fiesta.core.money import ZERO, percentage_of, to_money
from fiesta.core.timeutils import coerce_utc, utcnow
from fiesta.db.session import atomic
from fiesta.models import (
    ACTIVE_DISPUTE_STATUSES,
    AdminAction,
    Dispute,
    DisputeMessage,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    Match,
    MatchStatus,
)
from fiesta.schemas.dispute import ResolutionDecision
from fiesta.services import (
    audit_service,
    experience_service,
    ledger_service,
    match_service,
    trust_service,
    wallet_service,
)
from fiesta.services.errors import (
    AlreadyResolvedError,
    DuplicateDisputeError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

_PENALIZING_ACTIONS = frozenset({AdminAction.STRIKE, AdminAction.BAN})


def _already_resolved(dispute_id: uuid.UUID) -> AlreadyResolvedError:
    return AlreadyResolvedError("Dispute has already been resolved", dispute_id=dispute_id)


async def _lock_dispute(session: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
    result = await session.execute(
        select(Dispute)
        .where(Dispute.id == dispute_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found", dispute_id=dispute_id)
    return dispute


def _ensure_disputable(match: Match, now: datetime) -> None:
    if match.status == MatchStatus.ACCEPTED:
        return
    if match.accepted_at is None:
        # Withdrawn or expired requests never reached an agreement.
        raise InvalidTransitionError(
            "Only matches the host accepted can be disputed",
            match_id=match.id,
            status=match.status.value,
        )
    if match.status in (MatchStatus.COMPLETED, MatchStatus.CANCELLED):
        closed_at = coerce_utc(match.closed_at or match.updated_at)
        window = timedelta(days=get_settings().dispute_window_days)
        if now - closed_at <= window:
            return
        raise InvalidTransitionError(
            "The dispute window for this match has closed",
            match_id=match.id,
            status=match.status.value,
        )
    raise InvalidTransitionError(
        f"Cannot open a dispute on a {match.status.value} match",
        match_id=match.id,
        status=match.status.value,
    )


async def open_dispute(
    session: AsyncSession,
    *,
    match_id: uuid.UUID,
    opener_id: uuid.UUID,
    reason: DisputeReason,
    description: str,
    evidence: list[str] | None = None,
) -> Dispute:
    match = await match_service.get_match(session, match_id=match_id, user_id=opener_id)
    _ensure_disputable(match, utcnow())

    existing = await session.scalar(
        select(Dispute.id).where(
            Dispute.match_id == match_id, Dispute.status.in_(ACTIVE_DISPUTE_STATUSES)
        )
    )
    if existing is not None:
        raise DuplicateDisputeError(
            "This match already has an open dispute", dispute_id=existing
        )

    dispute = Dispute(
        match_id=match_id,
        opener_id=opener_id,
        respondent_id=match.counterpart_of(opener_id),
        reason=reason,
        description=description,
        evidence=evidence or None,
        status=DisputeStatus.OPEN,
    )
    session.add(dispute)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateDisputeError("This match already has an open dispute") from exc
    await session.refresh(dispute)
    logger.info("Dispute %s opened on match %s by %s", dispute.id, match_id, opener_id)
    return dispute


async def _load_with_messages(
    session: AsyncSession, dispute_id: uuid.UUID
) -> Dispute:
    result = await session.execute(
        select(Dispute)
        .options(selectinload(Dispute.messages))
        .where(Dispute.id == dispute_id)
        .execution_options(populate_existing=True)
    )
    dispute = result.scalar_one_or_none()
    if dispute is None:
        raise NotFoundError("Dispute not found", dispute_id=dispute_id)
    return dispute


def _ensure_party(dispute: Dispute, user_id: uuid.UUID) -> None:
    if user_id not in (dispute.opener_id, dispute.respondent_id):
        raise PermissionDeniedError(
            "Only the parties to a dispute can see it", dispute_id=dispute.id
        )


async def get_dispute_detail(
    session: AsyncSession,
    *,
    dispute_id: uuid.UUID,
    user_id: uuid.UUID,
    is_admin: bool = False,
) -> Dispute:
    """Dispute with its message thread; admins see every dispute."""
    dispute = await _load_with_messages(session, dispute_id)
    if not is_admin:
        _ensure_party(dispute, user_id)
    return dispute


async def add_message(
    session: AsyncSession,
    *,
    dispute_id: uuid.UUID,
    author_id: uuid.UUID,
    body: str,
    is_admin: bool = False,
    attachments: list[str] | None = None,
) -> DisputeMessage:
    dispute = await session.get(Dispute, dispute_id, populate_existing=True)
    if dispute is None:
        raise NotFoundError("Dispute not found", dispute_id=dispute_id)
    if not is_admin:
        _ensure_party(dispute, author_id)
    if dispute.is_terminal:
        raise AlreadyResolvedError(
            "Messages cannot be added to a resolved dispute", dispute_id=dispute_id
        )

    message = DisputeMessage(
        dispute_id=dispute_id,
        author_id=author_id,
        body=body,
        is_admin=is_admin,
        attachments=attachments or None,
    )
    session.add(message)
    await session.commit()
    await session.refresh(message)
    return message


async def list_user_disputes(
    session: AsyncSession, *, user_id: uuid.UUID
) -> Sequence[Dispute]:
    result = await session.execute(
        select(Dispute)
        .where((Dispute.opener_id == user_id) | (Dispute.respondent_id == user_id))
        .order_by(Dispute.created_at.desc())
    )
    return result.scalars().all()


async def list_disputes(
    session: AsyncSession,
    *,
    status: DisputeStatus | None = None,
    reason: DisputeReason | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Dispute], int]:
    filters = []
    if status is not None:
        filters.append(Dispute.status == status)
    if reason is not None:
        filters.append(Dispute.reason == reason)
    page = max(page, 1)
    total = await session.scalar(
        select(func.count()).select_from(Dispute).where(*filters)
    )
    result = await session.execute(
        select(Dispute)
        .where(*filters)
        .order_by(Dispute.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), int(total or 0)


async def mark_under_review(
    session: AsyncSession, *, dispute_id: uuid.UUID, admin_id: uuid.UUID
) -> Dispute:
    async with atomic(session, conflict_error=lambda: _already_resolved(dispute_id)):
        dispute = await _lock_dispute(session, dispute_id)
        if dispute.is_terminal:
            raise _already_resolved(dispute_id)
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidTransitionError(
                "Only open disputes can be taken under review",
                dispute_id=dispute_id,
                status=dispute.status.value,
            )
        dispute.status = DisputeStatus.UNDER_REVIEW
        dispute.reviewed_by_id = admin_id
        await audit_service.record_event(
            session,
            event_type="dispute.under_review",
            user_id=admin_id,
            payload={"dispute_id": str(dispute_id)},
            commit=False,
        )
    return dispute


async def resolve_dispute(
    session: AsyncSession,
    *,
    dispute_id: uuid.UUID,
    admin_id: uuid.UUID,
    decision: ResolutionDecision,
    admin_action: AdminAction = AdminAction.NONE,
    admin_notes: str | None = None,
    penalized_user_id: uuid.UUID | None = None,
) -> Dispute:
    """Resolve a dispute exactly once.

    A second call, or a call that loses a race with another resolver, raises
    ``AlreadyResolvedError`` and moves no money.
    """
    resolution = DisputeResolution(decision.kind)
    async with atomic(session, conflict_error=lambda: _already_resolved(dispute_id)):
        dispute = await _lock_dispute(session, dispute_id)
        if dispute.is_terminal:
            raise _already_resolved(dispute_id)
        match = await match_service.lock_match(session, dispute.match_id)

        target_id: uuid.UUID | None = None
        if admin_action in _PENALIZING_ACTIONS:
            target_id = penalized_user_id or dispute.respondent_id
            if match.role_of(target_id) is None:
                raise PermissionDeniedError(
                    "Penalties can only target a party to the match",
                    user_id=target_id,
                )

        percentage = decision.refund_percentage
        refund_amount = ZERO
        if percentage > 0 and match.total_price is not None:
            refund_amount = percentage_of(to_money(match.total_price), percentage)

        user_ids = {match.requester_id}
        if target_id is not None:
            user_ids.add(target_id)
        users = await ledger_service.lock_users(session, user_ids)

        if refund_amount > ZERO:
            refund_tx = await wallet_service.refund(
                session,
                user_id=match.requester_id,
                amount=refund_amount,
                match_id=match.id,
                reason=f"Dispute resolution refund ({percentage}%)",
                counterparty_id=match.host_id,
            )
            dispute.refund_transaction_id = refund_tx.id

        reason = admin_notes or f"Dispute {dispute.id}"
        if admin_action == AdminAction.STRIKE and target_id is not None:
            trust_service.apply_strike(users[target_id], reason=reason)
        elif admin_action == AdminAction.BAN and target_id is not None:
            trust_service.apply_ban(users[target_id], reason=reason)
        elif admin_action == AdminAction.REMOVE_CONTENT:
            await experience_service.unpublish(session, experience_id=match.experience_id)

        now = utcnow()
        dispute.status = (
            DisputeStatus.CLOSED
            if resolution == DisputeResolution.CLOSED
            else DisputeStatus.RESOLVED
        )
        dispute.resolution = resolution
        dispute.refund_percentage = percentage if percentage > 0 else None
        dispute.refund_amount = refund_amount if refund_amount > ZERO else None
        dispute.admin_action = admin_action
        dispute.penalized_user_id = target_id
        dispute.resolution_notes = admin_notes
        dispute.resolved_by_id = admin_id
        dispute.resolved_at = now

        await audit_service.record_event(
            session,
            event_type="dispute.resolved",
            user_id=admin_id,
            description=admin_notes,
            payload={
                "dispute_id": str(dispute.id),
                "match_id": str(match.id),
                "resolution": resolution.value,
                "refund_amount": str(refund_amount),
                "admin_action": admin_action.value,
                "penalized_user_id": str(target_id) if target_id else None,
            },
            commit=False,
        )

    logger.info(
        "Dispute %s resolved as %s by %s (refund %s, action %s)",
        dispute_id,
        resolution.value,
        admin_id,
        refund_amount,
        admin_action.value,
    )
    return dispute


async def dispute_stats(
    session: AsyncSession, *, now: datetime | None = None
) -> dict[str, object]:
    current = now or utcnow()
    by_status = {status.value: 0 for status in DisputeStatus}
    for status, count in (
        await session.execute(
            select(Dispute.status, func.count()).group_by(Dispute.status)
        )
    ).all():
        by_status[status.value] = int(count)

    by_reason = {reason.value: 0 for reason in DisputeReason}
    for reason, count in (
        await session.execute(
            select(Dispute.reason, func.count()).group_by(Dispute.reason)
        )
    ).all():
        by_reason[reason.value] = int(count)

    last_30_days = await session.scalar(
        select(func.count())
        .select_from(Dispute)
        .where(Dispute.created_at >= current - timedelta(days=30))
    )
    total_refunded = await session.scalar(
        select(func.coalesce(func.sum(Dispute.refund_amount), 0))
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_reason": by_reason,
        "last_30_days": int(last_30_days or 0),
        "total_refunded": to_money(total_refunded or Decimal("0")),
    }
