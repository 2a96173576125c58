"""Wallet endpoints for the signed-in user."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.api import deps
from fiesta.core.config import get_settings
from fiesta.models.user import User
from fiesta.models.wallet import TransactionType
from fiesta.schemas.wallet import (
    WalletRead,
    WalletTransactionPage,
    WalletTransactionRead,
)
from fiesta.services import ledger_service, wallet_service

router = APIRouter()


@router.get("", response_model=WalletRead, summary="Wallet summary")
async def read_wallet(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> WalletRead:
    summary = await wallet_service.get_wallet(session, user_id=current_user.id)
    return WalletRead.model_validate(summary)


@router.get("/can-operate", summary="Whether the wallet covers a platform fee")
async def read_can_operate(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> dict[str, bool]:
    return {
        "can_operate": await wallet_service.can_operate(
            session, user_id=current_user.id
        )
    }


@router.get(
    "/transactions",
    response_model=WalletTransactionPage,
    summary="Wallet transaction history",
)
async def list_transactions(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=100)] = None,
    type: TransactionType | None = None,
) -> WalletTransactionPage:
    size = page_size or get_settings().transactions_page_size
    items, total = await ledger_service.list_transactions(
        session, user_id=current_user.id, page=page, page_size=size, type=type
    )
    return WalletTransactionPage(
        items=[WalletTransactionRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=size,
    )
