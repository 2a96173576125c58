"""Read-only view of experience listings used by the booking core."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.core.money import to_money
from fiesta.models import CancellationPolicy, Experience, ExperienceType
from fiesta.services.errors import NotFoundError

_FEE_BEARING_TYPES = frozenset({ExperienceType.PAID, ExperienceType.MIXED})


@dataclass(frozen=True)
class ExperienceTerms:
    id: uuid.UUID
    host_id: uuid.UUID
    title: str
    experience_type: ExperienceType
    price_per_person: Decimal | None
    capacity: int
    cancellation_policy: CancellationPolicy
    published: bool

    @property
    def charges_platform_fee(self) -> bool:
        return self.experience_type in _FEE_BEARING_TYPES


def _terms_from(experience: Experience) -> ExperienceTerms:
    return ExperienceTerms(
        id=experience.id,
        host_id=experience.host_id,
        title=experience.title,
        experience_type=experience.experience_type,
        price_per_person=(
            to_money(experience.price_per_person)
            if experience.price_per_person is not None
            else None
        ),
        capacity=experience.capacity,
        cancellation_policy=experience.cancellation_policy,
        published=experience.published,
    )


async def get_terms(
    session: AsyncSession, *, experience_id: uuid.UUID
) -> ExperienceTerms:
    experience = await session.get(Experience, experience_id, populate_existing=True)
    if experience is None:
        raise NotFoundError("Experience not found", experience_id=experience_id)
    return _terms_from(experience)


def quote_total(terms: ExperienceTerms, participants: int) -> Decimal | None:
    """Price for the party, or None when nothing is paid in money."""
    if terms.experience_type == ExperienceType.EXCHANGE:
        return None
    if terms.price_per_person is None:
        return None
    return to_money(terms.price_per_person * participants)


async def unpublish(session: AsyncSession, *, experience_id: uuid.UUID) -> None:
    """Take a listing down; flushes only."""
    experience = await session.get(Experience, experience_id)
    if experience is None:
        raise NotFoundError("Experience not found", experience_id=experience_id)
    experience.published = False
    await session.flush()
