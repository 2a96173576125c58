"""Test fixtures for the marketplace backend."""
from __future__ import annotations

import os
from collections.abc import AsyncIterator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("INTERNAL_API_TOKEN", "internal-test-token")

from fiesta.core.config import get_settings
from fiesta.core.security import get_password_hash
from fiesta.db.base import Base
from fiesta.db.session import dispose_engine, get_sessionmaker
from fiesta.main import app
from fiesta.models import (
    CancellationPolicy,
    Experience,
    ExperienceType,
    TransactionType,
    User,
    UserRole,
)
from fiesta.services import ledger_service

PASSWORD = "Fiesta2024!"
STARTING_BALANCE = Decimal("10.00")


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await dispose_engine(db_url)


def _member(email: str, full_name: str, role: UserRole = UserRole.MEMBER) -> User:
    return User(
        email=email,
        hashed_password=get_password_hash(PASSWORD),
        full_name=full_name,
        role=role,
    )


@pytest_asyncio.fixture()
async def marketplace(reset_database: None, db_url: str) -> dict[str, object]:
    """Seed an admin, a host with two listings and two travelers.

    The host and the first traveler start with a funded wallet; the second
    traveler's wallet is empty.
    """
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        admin = _member("admin@fiesta.test", "Ada Admin", UserRole.ADMIN)
        host = _member("host@fiesta.test", "Hugo Host")
        traveler = _member("traveler@fiesta.test", "Tina Traveler")
        broke = _member("broke@fiesta.test", "Bruno Broke")
        session.add_all([admin, host, traveler, broke])
        await session.flush()

        paid = Experience(
            host_id=host.id,
            title="Feria de Abril caseta",
            experience_type=ExperienceType.PAID,
            price_per_person=Decimal("45.00"),
            capacity=4,
            cancellation_policy=CancellationPolicy.FLEXIBLE,
        )
        exchange = Experience(
            host_id=host.id,
            title="Sofa for Tomatina",
            experience_type=ExperienceType.EXCHANGE,
            capacity=2,
        )
        session.add_all([paid, exchange])
        await session.flush()

        for user in (host, traveler):
            await ledger_service.credit(
                session,
                user_id=user.id,
                amount=STARTING_BALANCE,
                type=TransactionType.TOPUP,
                description="Seed balance",
            )
        await session.commit()

        return {
            "admin_id": admin.id,
            "admin_email": admin.email,
            "host_id": host.id,
            "host_email": host.email,
            "traveler_id": traveler.id,
            "traveler_email": traveler.email,
            "broke_id": broke.id,
            "broke_email": broke.email,
            "password": PASSWORD,
            "paid_experience_id": paid.id,
            "exchange_experience_id": exchange.id,
        }


@pytest_asyncio.fixture()
async def app_context(
    marketplace: dict[str, object],
) -> AsyncIterator[dict[str, object]]:
    """Yield an async client alongside the seeded marketplace data."""
    context = dict(marketplace)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        context["client"] = client
        yield context
