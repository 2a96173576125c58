"""User data access helpers."""
from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.security import get_password_hash
from fiesta.models.user import User
from fiesta.schemas.user import UserCreate


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    """Return a user by email address."""
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: uuid.UUID) -> User | None:
    """Return a user by ID."""
    result = await session.execute(
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_emails(
    session: AsyncSession, user_ids: Iterable[uuid.UUID]
) -> list[str]:
    ids = list(set(user_ids))
    if not ids:
        return []
    result = await session.execute(select(User.email).where(User.id.in_(ids)))
    return list(result.scalars().all())


async def create_user(session: AsyncSession, payload: UserCreate) -> User:
    """Persist a new user with hashed password."""
    user = User(
        email=payload.email.lower(),
        hashed_password=get_password_hash(payload.password),
        full_name=payload.full_name,
        role=payload.role,
        is_active=True,
    )
    session.add(user)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise exc
    await session.refresh(user)
    return user
