"""Authentication service helpers."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.config import get_settings
from fiesta.core.security import create_access_token, verify_password
from fiesta.models.user import User, UserRole
from fiesta.schemas.user import UserCreate
from fiesta.services import user_service

logger = logging.getLogger(__name__)


async def authenticate_user(
    session: AsyncSession, email: str, password: str
) -> User | None:
    """Validate credentials and return a user if correct."""
    user = await user_service.get_user_by_email(session, email=email.lower())
    if user is None:
        return None
    if not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def create_access_token_for_user(user: User) -> str:
    """Generate a JWT for a user."""
    return create_access_token(str(user.id), role=user.role.value)


async def ensure_default_admin(session: AsyncSession) -> User | None:
    """Create the configured admin account on first start, if any is configured."""
    settings = get_settings()
    if not settings.default_admin_email or not settings.default_admin_password:
        return None
    existing = await user_service.get_user_by_email(
        session, email=settings.default_admin_email.lower()
    )
    if existing is not None:
        return existing
    payload = UserCreate(
        email=settings.default_admin_email,
        password=settings.default_admin_password,
        full_name="Platform Admin",
        role=UserRole.ADMIN,
    )
    admin = await user_service.create_user(session, payload)
    logger.info("Created default admin %s", admin.email)
    return admin
