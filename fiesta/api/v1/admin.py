"""Admin endpoints: dispute review, trust moderation and ledger tools.

Every call is attributed to the signed-in admin through the audit trail.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.api import deps
from fiesta.models.dispute import DisputeReason, DisputeStatus
from fiesta.models.match import MatchStatus
from fiesta.models.user import User
from fiesta.models.wallet import TransactionStatus, TransactionType
from fiesta.schemas.audit import AuditEventRead
from fiesta.schemas.dispute import (
    DisputePage,
    DisputeRead,
    DisputeResolveRequest,
    DisputeStats,
)
from fiesta.schemas.match import ExpirySweepResult, MatchPage, MatchRead
from fiesta.schemas.user import BanRequest, StrikeRequest, UserPage, UserTrustRead
from fiesta.schemas.wallet import (
    ReconcileRead,
    WalletTransactionPage,
    WalletTransactionRead,
)
from fiesta.services import (
    audit_service,
    dispute_service,
    ledger_service,
    match_service,
    notification_service,
    trust_service,
    user_service,
)

router = APIRouter()

AdminUser = Annotated[User, Depends(deps.get_current_admin)]
Session = Annotated[AsyncSession, Depends(deps.get_db_session)]


@router.get("/disputes", response_model=DisputePage, summary="List disputes")
async def list_disputes(
    session: Session,
    admin: AdminUser,
    status_filter: DisputeStatus | None = None,
    reason: DisputeReason | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> DisputePage:
    items, total = await dispute_service.list_disputes(
        session, status=status_filter, reason=reason, page=page, page_size=page_size
    )
    return DisputePage(
        items=[DisputeRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/disputes/stats", response_model=DisputeStats, summary="Dispute stats")
async def read_dispute_stats(session: Session, admin: AdminUser) -> DisputeStats:
    return DisputeStats(**await dispute_service.dispute_stats(session))


@router.post(
    "/disputes/{dispute_id}/review",
    response_model=DisputeRead,
    summary="Take a dispute under review",
)
async def review_dispute(
    dispute_id: uuid.UUID, session: Session, admin: AdminUser
) -> DisputeRead:
    dispute = await dispute_service.mark_under_review(
        session, dispute_id=dispute_id, admin_id=admin.id
    )
    return DisputeRead.model_validate(dispute)


@router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=DisputeRead,
    summary="Resolve a dispute",
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    payload: DisputeResolveRequest,
    session: Session,
    admin: AdminUser,
    background_tasks: BackgroundTasks,
) -> DisputeRead:
    dispute = await dispute_service.resolve_dispute(
        session,
        dispute_id=dispute_id,
        admin_id=admin.id,
        decision=payload.decision,
        admin_action=payload.admin_action,
        admin_notes=payload.admin_notes,
        penalized_user_id=payload.penalized_user_id,
    )
    async with notification_service.after_commit("dispute.resolved"):
        recipients = await user_service.get_emails(
            session, [dispute.opener_id, dispute.respondent_id]
        )
        notification_service.notify_dispute_resolved(
            background_tasks, dispute=dispute, recipients=recipients
        )
        if dispute.penalized_user_id is not None:
            penalized = await user_service.get_user(session, dispute.penalized_user_id)
            if penalized is not None:
                notification_service.notify_trust_change(
                    background_tasks, user=penalized
                )
    return DisputeRead.model_validate(dispute)


@router.post(
    "/users/{user_id}/strikes", response_model=UserTrustRead, summary="Add a strike"
)
async def add_strike(
    user_id: uuid.UUID,
    payload: StrikeRequest,
    session: Session,
    admin: AdminUser,
    background_tasks: BackgroundTasks,
) -> UserTrustRead:
    user = await trust_service.add_strike(
        session, user_id=user_id, admin_id=admin.id, reason=payload.reason
    )
    notification_service.notify_trust_change(background_tasks, user=user)
    return UserTrustRead.model_validate(user)


@router.delete(
    "/users/{user_id}/strikes",
    response_model=UserTrustRead,
    summary="Remove a strike",
)
async def remove_strike(
    user_id: uuid.UUID, session: Session, admin: AdminUser
) -> UserTrustRead:
    user = await trust_service.remove_strike(session, user_id=user_id, admin_id=admin.id)
    return UserTrustRead.model_validate(user)


@router.post("/users/{user_id}/ban", response_model=UserTrustRead, summary="Ban user")
async def ban_user(
    user_id: uuid.UUID,
    payload: BanRequest,
    session: Session,
    admin: AdminUser,
    background_tasks: BackgroundTasks,
) -> UserTrustRead:
    user = await trust_service.ban_user(
        session, user_id=user_id, admin_id=admin.id, reason=payload.reason
    )
    notification_service.notify_trust_change(background_tasks, user=user)
    return UserTrustRead.model_validate(user)


@router.delete(
    "/users/{user_id}/ban", response_model=UserTrustRead, summary="Lift a ban"
)
async def unban_user(
    user_id: uuid.UUID, session: Session, admin: AdminUser
) -> UserTrustRead:
    user = await trust_service.unban_user(session, user_id=user_id, admin_id=admin.id)
    return UserTrustRead.model_validate(user)


@router.get("/users/banned", response_model=UserPage, summary="Banned users")
async def list_banned_users(
    session: Session,
    admin: AdminUser,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> UserPage:
    items, total = await trust_service.list_banned_users(
        session, page=page, page_size=page_size
    )
    return UserPage(
        items=[UserTrustRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/users/{user_id}/transactions",
    response_model=WalletTransactionPage,
    summary="A user's wallet transactions",
)
async def list_user_transactions(
    user_id: uuid.UUID,
    session: Session,
    admin: AdminUser,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    type: TransactionType | None = None,
    status_filter: TransactionStatus | None = None,
) -> WalletTransactionPage:
    items, total = await ledger_service.list_transactions(
        session,
        user_id=user_id,
        page=page,
        page_size=page_size,
        type=type,
        status=status_filter,
    )
    return WalletTransactionPage(
        items=[WalletTransactionRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/users/{user_id}/reconcile",
    response_model=ReconcileRead,
    summary="Check a wallet against its ledger",
)
async def reconcile_wallet(
    user_id: uuid.UUID, session: Session, admin: AdminUser
) -> ReconcileRead:
    balance = await ledger_service.reconcile(session, user_id=user_id, actor_id=admin.id)
    return ReconcileRead(user_id=user_id, balance=balance)


@router.post(
    "/users/{user_id}/release-freeze",
    response_model=UserTrustRead,
    summary="Unfreeze a reconciled wallet",
)
async def release_freeze(
    user_id: uuid.UUID, session: Session, admin: AdminUser
) -> UserTrustRead:
    user = await ledger_service.release_freeze(
        session, user_id=user_id, actor_id=admin.id
    )
    return UserTrustRead.model_validate(user)


@router.get("/matches", response_model=MatchPage, summary="List matches")
async def list_matches(
    session: Session,
    admin: AdminUser,
    status_filter: MatchStatus | None = None,
    user_id: uuid.UUID | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> MatchPage:
    items, total = await match_service.list_matches(
        session, status=status_filter, user_id=user_id, page=page, page_size=page_size
    )
    return MatchPage(
        items=[MatchRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/matches/expire",
    response_model=ExpirySweepResult,
    summary="Run the pending-match expiry sweep",
)
async def expire_pending_matches(
    session: Session, admin: AdminUser, request: Request
) -> ExpirySweepResult:
    expired = await match_service.expire_pending_matches(session)
    match_ids = [match.id for match in expired]
    await audit_service.record_event(
        session,
        event_type="matches.expired",
        user_id=admin.id,
        payload={"match_ids": [str(match_id) for match_id in match_ids]},
        ip_address=deps.client_ip(request),
    )
    return ExpirySweepResult(expired=len(match_ids), match_ids=match_ids)


@router.post(
    "/matches/{match_id}/complete",
    response_model=MatchRead,
    summary="Complete a started match on behalf of the system",
)
async def complete_match(
    match_id: uuid.UUID, session: Session, admin: AdminUser
) -> MatchRead:
    match = await match_service.complete_match(session, match_id=match_id)
    await audit_service.record_event(
        session,
        event_type="matches.completed_by_admin",
        user_id=admin.id,
        payload={"match_id": str(match_id)},
    )
    return MatchRead.model_validate(match)


@router.get(
    "/audit-events",
    response_model=list[AuditEventRead],
    summary="Recent audit trail",
)
async def list_audit_events(
    session: Session,
    admin: AdminUser,
    event_type: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[AuditEventRead]:
    events = await audit_service.list_events(
        session, event_type=event_type, limit=limit
    )
    return [AuditEventRead.model_validate(event) for event in events]
