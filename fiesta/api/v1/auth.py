"""Authentication endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter

from fiesta.api.deps import client_ip, get_db_session
from fiesta.core.config import get_settings
from fiesta.schemas.auth import Token
from fiesta.services import audit_service
from fiesta.services.auth_service import authenticate_user, create_access_token_for_user

router = APIRouter()

_settings = get_settings()

_SECONDS_PER_WINDOW = {
    "second": 1,
    "seconds": 1,
    "minute": 60,
    "minutes": 60,
    "hour": 3600,
    "hours": 3600,
    "day": 86400,
    "days": 86400,
}


def parse_rate(value: str, *, fallback: tuple[int, int]) -> tuple[int, int]:
    """Parse ``"10/minute"`` into ``(times, seconds)``."""
    try:
        count_str, window_str = value.split("/", 1)
        count = int(count_str.strip())
    except ValueError:
        return fallback
    seconds = _SECONDS_PER_WINDOW.get(window_str.strip().lower(), fallback[1])
    return count, seconds


def rate_dependency(limit: tuple[int, int]):
    async def _dependency(request: Request, response: Response) -> None:
        if FastAPILimiter.redis is None:
            return None
        limiter = RateLimiter(times=limit[0], seconds=limit[1])
        await limiter(request, response)

    return Depends(_dependency)


_LOGIN_RATE_DEP = rate_dependency(parse_rate(_settings.rate_limit_login, fallback=(10, 60)))


@router.post(
    "/token",
    response_model=Token,
    summary="Obtain access token",
    dependencies=[_LOGIN_RATE_DEP],
)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> Token:
    """Validate credentials and issue a bearer token."""
    user = await authenticate_user(
        session, email=form_data.username, password=form_data.password
    )
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = await create_access_token_for_user(user)
    await audit_service.record_event(
        session,
        user_id=user.id,
        event_type="auth.login",
        description="Successful login",
        payload={"user_id": str(user.id), "email": user.email},
        ip_address=client_ip(request),
    )
    return Token(access_token=access_token)
