"""Wallet ledger: per-user cached balance over an append-only transaction log.

``credit`` and ``debit`` only flush. They are building blocks for a larger
unit of work (accepting a match, resolving a dispute) and the caller decides
when to commit. Balance rows are always locked before they are changed.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.config import get_settings
from fiesta.core.money import ZERO, to_money
from fiesta.core.timeutils import utcnow
from fiesta.models import (
    TransactionStatus,
    TransactionType,
    User,
    WalletTransaction,
)
from fiesta.services import audit_service
from fiesta.services.errors import (
    InsufficientFundsError,
    LedgerIntegrityFault,
    NotFoundError,
    WalletFrozenError,
)

logger = logging.getLogger(__name__)


async def lock_users(
    session: AsyncSession, user_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, User]:
    """Lock the given users' rows in ascending id order and return them fresh.

    A fixed order keeps two transactions that touch an overlapping pair of
    wallets from deadlocking each other.
    """
    locked: dict[uuid.UUID, User] = {}
    for user_id in sorted(set(user_ids)):
        result = await session.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        locked[user_id] = user
    return locked


async def _locked_user(session: AsyncSession, user_id: uuid.UUID) -> User:
    users = await lock_users(session, [user_id])
    return users[user_id]


def _positive_amount(amount: Decimal) -> Decimal:
    normalized = to_money(amount)
    if normalized <= ZERO:
        raise ValueError("Ledger amounts must be positive")
    return normalized


async def credit(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: Decimal,
    type: TransactionType,
    related_match_id: uuid.UUID | None = None,
    counterparty_id: uuid.UUID | None = None,
    description: str | None = None,
    external_reference: str | None = None,
) -> WalletTransaction:
    """Append a completed credit and raise the cached balance."""
    normalized = _positive_amount(amount)
    user = await _locked_user(session, user_id)

    new_balance = to_money(user.wallet_balance) + normalized
    user.wallet_balance = new_balance
    entry = WalletTransaction(
        user_id=user_id,
        type=type,
        status=TransactionStatus.COMPLETED,
        amount=normalized,
        balance_after=new_balance,
        related_match_id=related_match_id,
        counterparty_id=counterparty_id,
        description=description,
        external_reference=external_reference,
    )
    session.add(entry)
    await session.flush()
    logger.info(
        "Credited %s %s to wallet %s (balance %s)",
        normalized,
        type.value,
        user_id,
        new_balance,
    )
    return entry


async def debit(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: Decimal,
    type: TransactionType,
    related_match_id: uuid.UUID | None = None,
    counterparty_id: uuid.UUID | None = None,
    description: str | None = None,
) -> WalletTransaction:
    """Append a completed debit; nothing is written if the balance would go negative."""
    normalized = _positive_amount(amount)
    user = await _locked_user(session, user_id)

    if user.wallet_frozen_at is not None:
        raise WalletFrozenError(
            "Wallet is frozen pending a ledger review", user_id=user_id
        )
    current = to_money(user.wallet_balance)
    if current < normalized:
        raise InsufficientFundsError(
            "Insufficient wallet balance",
            user_id=user_id,
            balance=current,
            required=normalized,
        )

    new_balance = current - normalized
    user.wallet_balance = new_balance
    entry = WalletTransaction(
        user_id=user_id,
        type=type,
        status=TransactionStatus.COMPLETED,
        amount=-normalized,
        balance_after=new_balance,
        related_match_id=related_match_id,
        counterparty_id=counterparty_id,
        description=description,
    )
    session.add(entry)
    await session.flush()
    logger.info(
        "Debited %s %s from wallet %s (balance %s)",
        normalized,
        type.value,
        user_id,
        new_balance,
    )
    return entry


async def balance_from_log(session: AsyncSession, *, user_id: uuid.UUID) -> Decimal:
    """Sum of the user's completed transactions."""
    total = await session.scalar(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.user_id == user_id,
            WalletTransaction.status == TransactionStatus.COMPLETED,
        )
    )
    return to_money(total or ZERO)


async def reconcile(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> Decimal:
    """Recompute the balance from the log and compare it to the cached value.

    A mismatch is never corrected here. The wallet is frozen, the fault is
    audited and ``LedgerIntegrityFault`` is raised for an operator to handle.
    """
    user = await _locked_user(session, user_id)
    ledger_balance = await balance_from_log(session, user_id=user_id)
    cached_balance = to_money(user.wallet_balance)

    if ledger_balance == cached_balance:
        await session.commit()
        return ledger_balance

    if user.wallet_frozen_at is None:
        user.wallet_frozen_at = utcnow()
    await audit_service.record_event(
        session,
        event_type="wallet.integrity_fault",
        user_id=actor_id,
        description="Wallet balance diverged from its ledger; wallet frozen",
        payload={
            "wallet_user_id": str(user_id),
            "cached_balance": str(cached_balance),
            "ledger_balance": str(ledger_balance),
        },
        commit=False,
    )
    await session.commit()
    logger.critical(
        "Ledger integrity fault for wallet %s: cached=%s ledger=%s; debits halted",
        user_id,
        cached_balance,
        ledger_balance,
    )
    raise LedgerIntegrityFault(
        user_id=user_id, cached_balance=cached_balance, ledger_balance=ledger_balance
    )


async def release_freeze(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> User:
    """Lift a freeze once the cached balance matches the ledger again."""
    user = await _locked_user(session, user_id)
    if user.wallet_frozen_at is None:
        await session.commit()
        return user

    ledger_balance = await balance_from_log(session, user_id=user_id)
    cached_balance = to_money(user.wallet_balance)
    if ledger_balance != cached_balance:
        await session.rollback()
        raise LedgerIntegrityFault(
            user_id=user_id,
            cached_balance=cached_balance,
            ledger_balance=ledger_balance,
        )

    user.wallet_frozen_at = None
    await audit_service.record_event(
        session,
        event_type="wallet.freeze_released",
        user_id=actor_id,
        description="Wallet freeze released after reconciliation",
        payload={"wallet_user_id": str(user_id), "balance": str(ledger_balance)},
        commit=False,
    )
    await session.commit()
    await session.refresh(user)
    logger.info("Wallet %s unfrozen by %s", user_id, actor_id)
    return user


async def list_transactions(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    page: int = 1,
    page_size: int | None = None,
    type: TransactionType | None = None,
    status: TransactionStatus | None = TransactionStatus.COMPLETED,
) -> tuple[list[WalletTransaction], int]:
    """Return one page of the user's transactions, newest first, and the total."""
    size = page_size or get_settings().transactions_page_size
    page = max(page, 1)

    filters = [WalletTransaction.user_id == user_id]
    if type is not None:
        filters.append(WalletTransaction.type == type)
    if status is not None:
        filters.append(WalletTransaction.status == status)

    total = await session.scalar(
        select(func.count()).select_from(WalletTransaction).where(*filters)
    )
    result = await session.execute(
        select(WalletTransaction)
        .where(*filters)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return list(result.scalars().all()), int(total or 0)
