"""Helper utilities for recording audit events."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fiesta.models.audit_event import AuditEvent


async def record_event(
    session: AsyncSession,
    *,
    event_type: str,
    user_id: uuid.UUID | None = None,
    description: str | None = None,
    payload: dict[str, Any] | None = None,
    ip_address: str | None = None,
    commit: bool = True,
) -> AuditEvent:
    """Persist an audit event and return it.

    Pass ``commit=False`` when the event belongs to a larger unit of work; it is
    then only flushed and lands (or vanishes) with the surrounding transaction.
    """
    event = AuditEvent(
        user_id=user_id,
        event_type=event_type,
        description=description,
        payload=payload,
        ip_address=ip_address,
    )
    session.add(event)
    if not commit:
        await session.flush()
        return event
    await session.commit()
    await session.refresh(event)
    return event


async def list_events(
    session: AsyncSession,
    *,
    event_type: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    stmt = select(AuditEvent).order_by(AuditEvent.created_at.desc()).limit(limit)
    if event_type is not None:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    result = await session.execute(stmt)
    return list(result.scalars().all())
