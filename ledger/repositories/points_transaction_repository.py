"""
Points transaction repository.

Data access layer for the append-only points ledger.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.enums import PointsTransactionType
from ledger.models.points_transaction import PointsTransaction
from ledger.repositories.base import BaseRepository


class PointsTransactionRepository(BaseRepository[PointsTransaction]):
    """Points ledger repository. Entries are only ever appended."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize points transaction repository."""
        super().__init__(PointsTransaction, session)

    async def append(
        self,
        user_id: int,
        type: PointsTransactionType,
        points: int,
        balance_after: int,
        description: str,
        cash_amount: Decimal | None = None,
        source: str | None = None,
        source_id: str | None = None,
        source_order_id: str | None = None,
        virtual_user_id: int | None = None,
    ) -> PointsTransaction:
        """
        Append a ledger entry.

        The caller holds the user's row lock and passes the wallet balance
        it just wrote, so balance_after always matches the wallet.

        Args:
            user_id: Wallet owner
            type: Entry type
            points: Signed delta
            balance_after: Wallet balance after the delta
            description: Human readable description
            cash_amount: Cash credited (conversions)
            source: Earning source (awards)
            source_id: Catalog item id (awards)
            source_order_id: Order id (awards)
            virtual_user_id: Minted virtual user (redemptions)

        Returns:
            Created entry
        """
        return await self.create(
            user_id=user_id,
            type=type.value,
            points=points,
            balance_after=balance_after,
            description=description,
            cash_amount=cash_amount,
            source=source,
            source_id=source_id,
            source_order_id=source_order_id,
            virtual_user_id=virtual_user_id,
        )

    async def has_earned_for_order(self, user_id: int, order_id: str) -> bool:
        """Whether the user already earned points for an order."""
        stmt = (
            select(PointsTransaction.id)
            .where(
                PointsTransaction.user_id == user_id,
                PointsTransaction.type == PointsTransactionType.EARNED.value,
                PointsTransaction.source_order_id == order_id,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_user_entries(self, user_id: int) -> list[PointsTransaction]:
        """
        Get a user's full ledger in chain order.

        Args:
            user_id: Wallet owner

        Returns:
            Entries ordered by (created_at, id)
        """
        stmt = (
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.created_at, PointsTransaction.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_user_history(
        self,
        user_id: int,
        page: int = 1,
        per_page: int = 20,
        type: PointsTransactionType | None = None,
    ) -> tuple[list[PointsTransaction], int]:
        """
        Get a user's ledger page, newest first.

        Args:
            user_id: Wallet owner
            page: Page number (1-indexed)
            per_page: Items per page
            type: Optional entry type filter

        Returns:
            Tuple of (entries, total_count)
        """
        filters: dict = {"user_id": user_id}
        if type is not None:
            filters["type"] = type.value
        return await self.find_paginated(page=page, per_page=per_page, **filters)
