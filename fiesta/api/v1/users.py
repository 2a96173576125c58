"""Current-user endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from fiesta.api import deps
from fiesta.models.user import User
from fiesta.schemas.user import UserRead

router = APIRouter()


@router.get("/me", response_model=UserRead, summary="Current user")
async def read_current_user(
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> UserRead:
    return UserRead.model_validate(current_user)
