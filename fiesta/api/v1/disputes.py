"""Dispute endpoints for match participants."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.api import deps
from fiesta.models.user import User
from fiesta.schemas.dispute import (
    DisputeCreate,
    DisputeDetail,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputeRead,
)
from fiesta.services import dispute_service, notification_service, user_service

router = APIRouter()


@router.post(
    "",
    response_model=DisputeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Open a dispute on a match",
)
async def open_dispute(
    payload: DisputeCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
) -> DisputeRead:
    dispute = await dispute_service.open_dispute(
        session,
        match_id=payload.match_id,
        opener_id=current_user.id,
        reason=payload.reason,
        description=payload.description,
        evidence=payload.evidence,
    )
    async with notification_service.after_commit("dispute.opened"):
        recipients = await user_service.get_emails(session, [dispute.respondent_id])
        notification_service.notify_dispute_opened(
            background_tasks, dispute=dispute, recipients=recipients
        )
    return DisputeRead.model_validate(dispute)


@router.get("", response_model=list[DisputeRead], summary="My disputes")
async def list_my_disputes(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> list[DisputeRead]:
    disputes = await dispute_service.list_user_disputes(session, user_id=current_user.id)
    return [DisputeRead.model_validate(obj) for obj in disputes]


@router.get("/{dispute_id}", response_model=DisputeDetail, summary="Dispute detail")
async def get_dispute(
    dispute_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> DisputeDetail:
    dispute = await dispute_service.get_dispute_detail(
        session,
        dispute_id=dispute_id,
        user_id=current_user.id,
        is_admin=current_user.is_admin,
    )
    return DisputeDetail.model_validate(dispute)


@router.post(
    "/{dispute_id}/messages",
    response_model=DisputeMessageRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a message to the dispute thread",
)
async def add_message(
    dispute_id: uuid.UUID,
    payload: DisputeMessageCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    background_tasks: BackgroundTasks,
) -> DisputeMessageRead:
    message = await dispute_service.add_message(
        session,
        dispute_id=dispute_id,
        author_id=current_user.id,
        body=payload.body,
        is_admin=current_user.is_admin,
        attachments=payload.attachments,
    )
    async with notification_service.after_commit("dispute.message"):
        dispute = await dispute_service.get_dispute_detail(
            session, dispute_id=dispute_id, user_id=current_user.id, is_admin=True
        )
        others = {dispute.opener_id, dispute.respondent_id} - {current_user.id}
        recipients = await user_service.get_emails(session, others)
        notification_service.notify_dispute_message(
            background_tasks, recipients=recipients
        )
    return DisputeMessageRead.model_validate(message)
