"""Reject pending match requests older than the configured TTL.

Meant to run from cron; safe to run repeatedly.
"""
from __future__ import annotations

import asyncio
import logging

from fiesta.core.config import get_settings
from fiesta.db.session import dispose_engine, get_sessionmaker
from fiesta.services import match_service

logger = logging.getLogger(__name__)


async def expire() -> int:
    sessionmaker = get_sessionmaker()
    try:
        async with sessionmaker() as session:
            expired = await match_service.expire_pending_matches(session)
    finally:
        await dispose_engine()
    ttl = get_settings().pending_match_ttl_hours
    print(f"Expired {len(expired)} pending match(es) older than {ttl}h.")
    return len(expired)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(expire())


if __name__ == "__main__":
    main()
