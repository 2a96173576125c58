"""Match (booking request) endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.api import deps
from fiesta.models.match import MatchStatus
from fiesta.models.user import User
from fiesta.schemas.match import (
    CancellationPreview,
    CancellationRead,
    CancellationStats,
    MatchAccept,
    MatchCancel,
    MatchCancelResponse,
    MatchComplete,
    MatchCreate,
    MatchRead,
    MatchReject,
    MatchStats,
)
from fiesta.services import (
    cancellation_service,
    match_service,
    notification_service,
    wallet_service,
)

router = APIRouter()


@router.post(
    "",
    response_model=MatchRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request to join an experience",
)
async def create_match(
    payload: MatchCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
) -> MatchRead:
    match = await match_service.create_match(
        session,
        requester_id=current_user.id,
        experience_id=payload.experience_id,
        participants=payload.participants,
        start_date=payload.start_date,
        end_date=payload.end_date,
        message=payload.message,
    )
    async with notification_service.after_commit("match.requested"):
        emails = await match_service.participant_emails(session, match)
        notification_service.notify_match_requested(
            background_tasks, match=match, emails=emails
        )
    return MatchRead.model_validate(match)


@router.get("/received", response_model=list[MatchRead], summary="Requests I host")
async def list_received(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    status_filter: MatchStatus | None = None,
) -> list[MatchRead]:
    matches = await match_service.list_received(
        session, host_id=current_user.id, status=status_filter
    )
    return [MatchRead.model_validate(obj) for obj in matches]


@router.get("/sent", response_model=list[MatchRead], summary="Requests I sent")
async def list_sent(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    status_filter: MatchStatus | None = None,
) -> list[MatchRead]:
    matches = await match_service.list_sent(
        session, requester_id=current_user.id, status=status_filter
    )
    return [MatchRead.model_validate(obj) for obj in matches]


@router.get("/stats", response_model=MatchStats, summary="My match counts")
async def read_stats(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> MatchStats:
    stats = await match_service.match_stats(session, user_id=current_user.id)
    return MatchStats(**stats)


@router.get(
    "/cancellations",
    response_model=list[CancellationRead],
    summary="Cancellations I made",
)
async def list_cancellations(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> list[CancellationRead]:
    cancellations = await match_service.list_user_cancellations(
        session, user_id=current_user.id
    )
    return [CancellationRead.model_validate(obj) for obj in cancellations]


@router.get(
    "/cancellations/stats",
    response_model=CancellationStats,
    summary="My cancellation counts",
)
async def read_cancellation_stats(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> CancellationStats:
    stats = await match_service.cancellation_stats(session, user_id=current_user.id)
    return CancellationStats(**stats)


@router.get("/{match_id}", response_model=MatchRead, summary="Get match")
async def get_match(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> MatchRead:
    match = await match_service.get_match(
        session, match_id=match_id, user_id=current_user.id
    )
    return MatchRead.model_validate(match)


@router.post("/{match_id}/accept", response_model=MatchRead, summary="Accept match")
async def accept_match(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
    payload: MatchAccept | None = None,
) -> MatchRead:
    dates = payload or MatchAccept()
    match = await match_service.accept_match(
        session,
        match_id=match_id,
        host_id=current_user.id,
        start_date=dates.start_date,
        end_date=dates.end_date,
    )
    async with notification_service.after_commit("match.accepted"):
        fee = await wallet_service.fee_charged_for(
            session, match_id=match.id, user_id=match.requester_id
        )
        emails = await match_service.participant_emails(session, match)
        notification_service.notify_match_accepted(
            background_tasks, emails=emails, platform_fee=fee or None
        )
    return MatchRead.model_validate(match)


@router.post("/{match_id}/reject", response_model=MatchRead, summary="Reject match")
async def reject_match(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
    payload: MatchReject | None = None,
) -> MatchRead:
    match = await match_service.reject_match(
        session,
        match_id=match_id,
        host_id=current_user.id,
        reason=payload.reason if payload else None,
    )
    async with notification_service.after_commit("match.rejected"):
        emails = await match_service.participant_emails(session, match)
        notification_service.notify_match_rejected(
            background_tasks, match=match, emails=emails
        )
    return MatchRead.model_validate(match)


@router.get(
    "/{match_id}/cancellation-preview",
    response_model=CancellationPreview,
    summary="Preview refunds for cancelling now",
)
async def preview_cancellation(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> CancellationPreview:
    plan = await match_service.preview_cancellation(
        session, match_id=match_id, user_id=current_user.id
    )
    return CancellationPreview(
        cancelled_by=plan.cancelled_by,
        policy=plan.policy,
        policy_description=(
            cancellation_service.describe_policy(plan.policy) if plan.policy else None
        ),
        refund_percentage=plan.refund_percentage,
        requester_fee=plan.requester_fee,
        requester_refund=plan.requester_refund,
        penalty_amount=plan.penalty_amount,
        host_fee=plan.host_fee,
        host_refund=plan.host_refund,
        hours_until_start=plan.hours_until_start,
    )


@router.post(
    "/{match_id}/cancel", response_model=MatchCancelResponse, summary="Cancel match"
)
async def cancel_match(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
    payload: MatchCancel | None = None,
) -> MatchCancelResponse:
    match, cancellation = await match_service.cancel_match(
        session,
        match_id=match_id,
        user_id=current_user.id,
        reason=payload.reason if payload else None,
    )
    async with notification_service.after_commit("match.cancelled"):
        emails = await match_service.participant_emails(session, match)
        notification_service.notify_match_cancelled(
            background_tasks,
            emails=emails,
            cancelled_by=cancellation.cancelled_by_role,
            refund_amount=cancellation.refund_amount,
        )
    return MatchCancelResponse(
        match=MatchRead.model_validate(match),
        cancellation=CancellationRead.model_validate(cancellation),
    )


@router.post(
    "/{match_id}/complete", response_model=MatchRead, summary="Mark match completed"
)
async def complete_match(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
    payload: MatchComplete | None = None,
) -> MatchRead:
    match = await match_service.complete_match(
        session,
        match_id=match_id,
        actor_id=current_user.id,
        force=payload.force if payload else False,
    )
    async with notification_service.after_commit("match.completed"):
        emails = await match_service.participant_emails(session, match)
        notification_service.notify_match_completed(background_tasks, emails=emails)
    return MatchRead.model_validate(match)


@router.post(
    "/{match_id}/confirm",
    response_model=MatchRead,
    summary="Confirm the experience took place",
)
async def confirm_completion(
    match_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
) -> MatchRead:
    match = await match_service.confirm_completion(
        session, match_id=match_id, user_id=current_user.id
    )
    if match.status == MatchStatus.COMPLETED:
        async with notification_service.after_commit("match.completed"):
            emails = await match_service.participant_emails(session, match)
            notification_service.notify_match_completed(
                background_tasks, emails=emails
            )
    return MatchRead.model_validate(match)
