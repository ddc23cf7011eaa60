#!/usr/bin/env python3
"""
Re-settle the banked points of every real user.

Useful after an admin raises the virtual referral cap or lowers the
points price: each user is settled in its own transaction through the
regular settlement operation.
"""

import argparse
import asyncio

from loguru import logger

from ledger.config.logging import setup_logging
from ledger.database import create_engine, create_session_maker
from ledger.repositories.user_repository import UserRepository
from ledger.services.ledger_service import LedgerService
from ledger.utils.exceptions import LedgerError


async def settle_all_users(batch_size: int, dry_run: bool) -> None:
    """Settle every real user, batch by batch."""
    engine = create_engine()
    session_maker = create_session_maker(engine)
    service = LedgerService(session_maker)

    processed = 0
    created = 0
    failed = 0

    last_id = 0
    while True:
        async with session_maker() as session:
            batch = await UserRepository(session).get_real_user_ids_after(
                last_id, batch_size
            )
        if not batch:
            break
        last_id = batch[-1]

        for user_id in batch:
            processed += 1
            if dry_run:
                capabilities = await service.get_capabilities(user_id)
                if capabilities.possible_virtual_trees:
                    logger.info(
                        f"User {user_id}: would create "
                        f"{capabilities.possible_virtual_trees} virtual referrals"
                    )
                    created += capabilities.possible_virtual_trees
                continue

            try:
                result = await service.settle(user_id)
            except LedgerError as e:
                failed += 1
                logger.error(f"User {user_id}: settlement failed: {e}")
                continue
            created += result.virtual_trees_created

        logger.info(f"Processed {processed} users so far")

    await engine.dispose()

    verb = "would be created" if dry_run else "created"
    logger.success(
        f"Settled {processed} users: {created} virtual referrals {verb}, "
        f"{failed} failures"
    )


def main() -> None:
    """Parse arguments and run."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--batch-size", type=int, default=500)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report what settlement would create",
    )
    args = parser.parse_args()
    setup_logging()
    asyncio.run(settle_all_users(args.batch_size, args.dry_run))


if __name__ == "__main__":
    main()
