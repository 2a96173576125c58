"""Wallet business rules on top of the ledger."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.config import get_settings
from fiesta.core.money import ZERO, to_money
from fiesta.db.session import atomic
from fiesta.models import (
    ParticipantRole,
    TransactionStatus,
    TransactionType,
    User,
    WalletTransaction,
)
from fiesta.services import ledger_service
from fiesta.services.errors import (
    BelowMinimumError,
    DuplicateReferenceError,
    FundingFailedError,
    NotFoundError,
    WalletFrozenError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletSummary:
    user_id: uuid.UUID
    balance: Decimal
    currency: str
    platform_fee: Decimal
    min_top_up: Decimal
    can_operate: bool
    frozen: bool


def platform_fee() -> Decimal:
    return to_money(get_settings().platform_fee)


def min_top_up() -> Decimal:
    return to_money(get_settings().min_top_up)


async def _load_user(session: AsyncSession, user_id: uuid.UUID) -> User:
    user = await session.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User not found", user_id=user_id)
    return user


async def can_operate(session: AsyncSession, *, user_id: uuid.UUID) -> bool:
    """True when the wallet holds at least one platform fee. Read-only."""
    user = await _load_user(session, user_id)
    return to_money(user.wallet_balance) >= platform_fee()


async def get_wallet(session: AsyncSession, *, user_id: uuid.UUID) -> WalletSummary:
    user = await _load_user(session, user_id)
    balance = to_money(user.wallet_balance)
    fee = platform_fee()
    return WalletSummary(
        user_id=user.id,
        balance=balance,
        currency=get_settings().currency,
        platform_fee=fee,
        min_top_up=min_top_up(),
        can_operate=balance >= fee,
        frozen=user.wallet_frozen_at is not None,
    )


async def _find_by_reference(
    session: AsyncSession, reference: str
) -> WalletTransaction | None:
    result = await session.execute(
        select(WalletTransaction).where(
            WalletTransaction.external_reference == reference
        )
    )
    return result.scalar_one_or_none()


def _same_top_up(
    existing: WalletTransaction, *, user_id: uuid.UUID, amount: Decimal
) -> WalletTransaction:
    if (
        existing.user_id != user_id
        or existing.type != TransactionType.TOPUP
        or to_money(existing.amount) != amount
    ):
        raise DuplicateReferenceError(
            "Payment reference already recorded for a different top-up",
            external_reference=existing.external_reference,
        )
    return existing


async def top_up(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: Decimal,
    external_reference: str | None = None,
) -> WalletTransaction:
    """Record a credit for an external payment that has already been captured.

    Replaying the same ``external_reference`` returns the original transaction
    instead of crediting the wallet twice.
    """
    normalized = to_money(amount)
    minimum = min_top_up()
    if normalized < minimum:
        raise BelowMinimumError(
            f"Minimum top-up is {minimum}", minimum=minimum, amount=normalized
        )

    if external_reference:
        existing = await _find_by_reference(session, external_reference)
        if existing is not None:
            return _same_top_up(existing, user_id=user_id, amount=normalized)

    try:
        async with atomic(session):
            entry = await ledger_service.credit(
                session,
                user_id=user_id,
                amount=normalized,
                type=TransactionType.TOPUP,
                description="Wallet top-up",
                external_reference=external_reference,
            )
    except IntegrityError:
        if not external_reference:
            raise
        # Lost a race with a replay of the same payment.
        existing = await _find_by_reference(session, external_reference)
        if existing is None:
            raise
        return _same_top_up(existing, user_id=user_id, amount=normalized)

    await session.refresh(entry)
    return entry


async def charge_platform_fee(
    session: AsyncSession,
    *,
    host_id: uuid.UUID,
    requester_id: uuid.UUID,
    match_id: uuid.UUID,
    description: str | None = None,
) -> tuple[WalletTransaction, WalletTransaction]:
    """Debit the fee from both parties, or from neither.

    Both wallets are locked and checked before anything is written so a short
    balance on either side leaves the ledger untouched. Does not commit.
    """
    fee = platform_fee()
    users = await ledger_service.lock_users(session, [host_id, requester_id])
    parties = (
        (ParticipantRole.HOST, users[host_id]),
        (ParticipantRole.REQUESTER, users[requester_id]),
    )

    frozen = [role.value for role, user in parties if user.wallet_frozen_at is not None]
    if frozen:
        raise WalletFrozenError(
            "A wallet involved in this match is frozen", frozen_parties=frozen
        )

    short = [
        role.value for role, user in parties if to_money(user.wallet_balance) < fee
    ]
    if short:
        logger.warning(
            "Platform fee for match %s not charged; short parties: %s",
            match_id,
            ", ".join(short),
        )
        raise FundingFailedError(
            "Both parties need enough balance to cover the platform fee",
            match_id=match_id,
            platform_fee=fee,
            short_parties=short,
        )

    host_tx = await ledger_service.debit(
        session,
        user_id=host_id,
        amount=fee,
        type=TransactionType.PLATFORM_FEE,
        related_match_id=match_id,
        counterparty_id=requester_id,
        description=description,
    )
    requester_tx = await ledger_service.debit(
        session,
        user_id=requester_id,
        amount=fee,
        type=TransactionType.PLATFORM_FEE,
        related_match_id=match_id,
        counterparty_id=host_id,
        description=description,
    )
    return host_tx, requester_tx


async def refund(
    session: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: Decimal,
    match_id: uuid.UUID | None,
    reason: str,
    counterparty_id: uuid.UUID | None = None,
) -> WalletTransaction:
    """Credit a refund. Not constrained by balance; does not commit."""
    return await ledger_service.credit(
        session,
        user_id=user_id,
        amount=amount,
        type=TransactionType.REFUND,
        related_match_id=match_id,
        counterparty_id=counterparty_id,
        description=reason,
    )


async def fee_charged_for(
    session: AsyncSession, *, match_id: uuid.UUID, user_id: uuid.UUID
) -> Decimal:
    """Platform fee the user paid for the match (zero for exchange matches)."""
    total = await session.scalar(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
            WalletTransaction.related_match_id == match_id,
            WalletTransaction.user_id == user_id,
            WalletTransaction.type == TransactionType.PLATFORM_FEE,
            WalletTransaction.status == TransactionStatus.COMPLETED,
        )
    )
    return abs(to_money(total or ZERO))
