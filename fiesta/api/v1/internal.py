"""Service-to-service endpoints (payment processor hand-off)."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.api import deps
from fiesta.schemas.wallet import TopUpCreate, WalletTransactionRead
from fiesta.services import wallet_service

router = APIRouter(dependencies=[Depends(deps.require_internal_token)])


@router.post(
    "/wallet/top-ups",
    response_model=WalletTransactionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record a captured top-up",
)
async def record_top_up(
    payload: TopUpCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
) -> WalletTransactionRead:
    """Credit the wallet for a payment the processor already captured."""
    entry = await wallet_service.top_up(
        session,
        user_id=payload.user_id,
        amount=payload.amount,
        external_reference=payload.external_reference,
    )
    return WalletTransactionRead.model_validate(entry)
