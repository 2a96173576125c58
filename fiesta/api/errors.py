"""Map service errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from fiesta.services.errors import (
    AlreadyResolvedError,
    BelowMinimumError,
    CapacityExceededError,
    DuplicateDisputeError,
    DuplicateMatchError,
    DuplicateReferenceError,
    FundingFailedError,
    InsufficientFundsError,
    InvalidTransitionError,
    LedgerIntegrityFault,
    MarketplaceError,
    NotFoundError,
    PermissionDeniedError,
    TrustConflictError,
    UserBannedError,
    WalletFrozenError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[MarketplaceError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (UserBannedError, status.HTTP_403_FORBIDDEN),
    (FundingFailedError, status.HTTP_402_PAYMENT_REQUIRED),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (BelowMinimumError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (WalletFrozenError, status.HTTP_423_LOCKED),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (AlreadyResolvedError, status.HTTP_409_CONFLICT),
    (DuplicateDisputeError, status.HTTP_409_CONFLICT),
    (DuplicateMatchError, status.HTTP_409_CONFLICT),
    (DuplicateReferenceError, status.HTTP_409_CONFLICT),
    (CapacityExceededError, status.HTTP_409_CONFLICT),
    (TrustConflictError, status.HTTP_409_CONFLICT),
)


def status_for(exc: MarketplaceError) -> int:
    for error_class, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def _describe(request: Request) -> str:
    client = request.client.host if request.client else "-"
    return f"{request.method} {request.url.path} from {client}"


async def handle_marketplace_error(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = status_for(exc)
    logger.warning(
        "[%s] %s -> %s: %s", exc.code, _describe(request), status_code, exc.message
    )
    content = {"detail": exc.message, "code": exc.code, **exc.details}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning("[invalid_input] %s -> 400: %s", _describe(request), exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "code": "invalid_input"},
    )


async def handle_integrity_fault(
    request: Request, exc: LedgerIntegrityFault
) -> JSONResponse:
    logger.error("[%s] %s -> 500: %s", exc.code, _describe(request), exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Wallet ledger integrity fault; the wallet has been frozen",
            "code": exc.code,
            "user_id": str(exc.user_id),
            "cached_balance": str(exc.cached_balance),
            "ledger_balance": str(exc.ledger_balance),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, handle_marketplace_error)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, handle_value_error)  # type: ignore[arg-type]
    app.add_exception_handler(LedgerIntegrityFault, handle_integrity_fault)  # type: ignore[arg-type]
