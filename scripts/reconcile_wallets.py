"""Compare every cached wallet balance with its ledger.

Mismatching wallets are frozen and reported; the exit code is non-zero when
any were found.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from sqlalchemy import select

from fiesta.db.session import dispose_engine, get_sessionmaker
from fiesta.models.user import User
from fiesta.services import ledger_service
from fiesta.services.errors import LedgerIntegrityFault

logger = logging.getLogger(__name__)


async def reconcile_all(*, include_frozen: bool = False) -> list[LedgerIntegrityFault]:
    faults: list[LedgerIntegrityFault] = []
    sessionmaker = get_sessionmaker()
    try:
        async with sessionmaker() as session:
            query = select(User.id).order_by(User.id)
            if not include_frozen:
                query = query.where(User.wallet_frozen_at.is_(None))
            user_ids = list((await session.scalars(query)).all())
            for user_id in user_ids:
                try:
                    await ledger_service.reconcile(session, user_id=user_id)
                except LedgerIntegrityFault as fault:
                    faults.append(fault)
    finally:
        await dispose_engine()
    print(f"Checked {len(user_ids)} wallet(s); {len(faults)} mismatch(es).")
    for fault in faults:
        print(
            f"  {fault.user_id}: cached {fault.cached_balance} "
            f"!= ledger {fault.ledger_balance}"
        )
    return faults


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile wallet balances")
    parser.add_argument(
        "--include-frozen",
        action="store_true",
        help="Also re-check wallets that are already frozen",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    faults = asyncio.run(reconcile_all(include_frozen=args.include_frozen))
    sys.exit(1 if faults else 0)


if __name__ == "__main__":
    main()
