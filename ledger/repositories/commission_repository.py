"""
Commission transaction repository.

Data access layer for CommissionTransaction and its tree shares.
"""

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.commission_transaction import (
    CommissionTransaction,
    CommissionTreeShare,
)
from ledger.repositories.base import BaseRepository


class CommissionTransactionRepository(BaseRepository[CommissionTransaction]):
    """Commission transaction repository with order and history queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize commission transaction repository."""
        super().__init__(CommissionTransaction, session)

    async def get_by_order_id(
        self, order_id: str
    ) -> CommissionTransaction | None:
        """
        Get the commission transaction of an order.

        Args:
            order_id: External order id

        Returns:
            Transaction or None if the order was never processed
        """
        stmt = (
            select(CommissionTransaction)
            .where(CommissionTransaction.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_purchaser(
        self, purchaser_id: int, page: int = 1, per_page: int = 20
    ) -> tuple[list[CommissionTransaction], int]:
        """
        Get orders placed by a user, newest first.

        Args:
            purchaser_id: Purchaser user ID
            page: Page number (1-indexed)
            per_page: Items per page

        Returns:
            Tuple of (transactions, total_count)
        """
        return await self.find_paginated(
            page=page, per_page=per_page, purchaser_id=purchaser_id
        )

    async def get_by_recipient(
        self, user_id: int, page: int = 1, per_page: int = 20
    ) -> tuple[list[CommissionTransaction], int]:
        """
        Get transactions that credited a user, newest first.

        A user is a recipient as the direct referrer or as the payee of any
        tree share (including pass-through shares from virtual referrals).

        Args:
            user_id: Recipient user ID
            page: Page number (1-indexed)
            per_page: Items per page

        Returns:
            Tuple of (transactions, total_count)
        """
        share_tx_ids = select(CommissionTreeShare.transaction_id).where(
            CommissionTreeShare.paid_to_id == user_id
        )
        condition = or_(
            CommissionTransaction.direct_recipient_id == user_id,
            CommissionTransaction.id.in_(share_tx_ids),
        )

        count_stmt = (
            select(func.count())
            .select_from(CommissionTransaction)
            .where(condition)
        )
        total = (await self.session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(CommissionTransaction)
            .where(condition)
            .order_by(CommissionTransaction.id.desc())
            .offset((max(page, 1) - 1) * per_page)
            .limit(per_page)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total
