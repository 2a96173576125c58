"""Domain errors raised by the marketplace services.

Every business failure is a ``MarketplaceError`` (and therefore a
``ValueError``) carrying a stable ``code`` plus JSON-friendly ``details``.
``LedgerIntegrityFault`` is deliberately not part of that family: it signals a
corrupted wallet, never bad input.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any


def _plain(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


class MarketplaceError(ValueError):
    """Base class for expected business failures."""

    code = "marketplace_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {key: _plain(value) for key, value in details.items()}


class NotFoundError(MarketplaceError):
    code = "not_found"


class PermissionDeniedError(MarketplaceError):
    code = "permission_denied"


class InvalidTransitionError(MarketplaceError):
    """State machine misuse; retrying the same call will fail again."""

    code = "invalid_transition"


class InsufficientFundsError(MarketplaceError):
    code = "insufficient_funds"

    def __init__(self, message: str, **details: Any) -> None:
        details.setdefault("top_up_required", True)
        super().__init__(message, **details)


class FundingFailedError(MarketplaceError):
    """Fee charge failed on accept; retryable once the short party tops up."""

    code = "funding_failed"

    def __init__(self, message: str, **details: Any) -> None:
        details.setdefault("top_up_required", True)
        super().__init__(message, **details)


class BelowMinimumError(MarketplaceError):
    code = "below_minimum"


class WalletFrozenError(MarketplaceError):
    code = "wallet_frozen"


class DuplicateReferenceError(MarketplaceError):
    code = "duplicate_reference"


class AlreadyResolvedError(MarketplaceError):
    code = "already_resolved"


class DuplicateDisputeError(MarketplaceError):
    code = "duplicate_dispute"


class DuplicateMatchError(MarketplaceError):
    code = "duplicate_match"


class CapacityExceededError(MarketplaceError):
    code = "capacity_exceeded"


class UserBannedError(MarketplaceError):
    code = "user_banned"


class TrustConflictError(MarketplaceError):
    code = "trust_conflict"


class LedgerIntegrityFault(RuntimeError):
    """Cached balance and transaction log disagree for a user."""

    code = "ledger_integrity_fault"

    def __init__(
        self, *, user_id: uuid.UUID, cached_balance: Decimal, ledger_balance: Decimal
    ) -> None:
        super().__init__(
            f"Wallet {user_id} diverged: cached {cached_balance} != ledger {ledger_balance}"
        )
        self.user_id = user_id
        self.cached_balance = cached_balance
        self.ledger_balance = ledger_balance


__all__ = [
    "AlreadyResolvedError",
    "BelowMinimumError",
    "CapacityExceededError",
    "DuplicateDisputeError",
    "DuplicateMatchError",
    "DuplicateReferenceError",
    "FundingFailedError",
    "InsufficientFundsError",
    "InvalidTransitionError",
    "LedgerIntegrityFault",
    "MarketplaceError",
    "NotFoundError",
    "PermissionDeniedError",
    "TrustConflictError",
    "UserBannedError",
    "WalletFrozenError",
]
