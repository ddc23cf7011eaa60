"""
Internal fund repository.

Data access layer for the Trust and Development funds.
"""

from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.enums import FundEntryType, FundType
from ledger.models.internal_fund import FundEntry, InternalFund
from ledger.repositories.base import BaseRepository


class InternalFundRepository(BaseRepository[InternalFund]):
    """Internal fund repository with atomic credits."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize internal fund repository."""
        super().__init__(InternalFund, session)

    async def ensure_funds(self) -> None:
        """Create the fund rows that do not exist yet."""
        existing = {fund.fund_type for fund in await self.find_by()}
        for fund_type in FundType:
            if fund_type.value not in existing:
                self.session.add(InternalFund(fund_type=fund_type.value))
        await self.session.flush()

    async def credit(
        self,
        fund_type: FundType,
        amount: Decimal,
        entry_type: FundEntryType,
        order_id: str | None = None,
        description: str | None = None,
    ) -> FundEntry | None:
        """
        Credit a fund and record the entry.

        The balance is incremented in the database so concurrent
        orders never overwrite each other's credit.

        Args:
            fund_type: Fund to credit
            amount: Amount (zero amounts are not recorded)
            entry_type: Why the fund receives the amount
            order_id: Originating order
            description: Human readable description

        Returns:
            Created entry, or None for a zero amount
        """
        if amount <= 0:
            return None

        stmt = (
            update(InternalFund)
            .where(InternalFund.fund_type == fund_type.value)
            .values(balance=InternalFund.balance + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.ensure_funds()
            await self.session.execute(stmt)

        entry = FundEntry(
            fund_type=fund_type.value,
            entry_type=entry_type.value,
            amount=amount,
            order_id=order_id,
            description=description,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_balances(self) -> dict[str, Decimal]:
        """
        Get the balance of every fund.

        Returns:
            Mapping of fund type to balance (missing funds read as zero)
        """
        stmt = select(InternalFund.fund_type, InternalFund.balance)
        result = await self.session.execute(stmt)
        balances = {fund_type.value: Decimal("0") for fund_type in FundType}
        for fund_type, balance in result.all():
            balances[fund_type] = Decimal(str(balance))
        return balances

    async def get_entry_totals(self) -> dict[tuple[str, str], Decimal]:
        """
        Sum fund entries per (fund type, entry type).

        Returns:
            Mapping of (fund_type, entry_type) to total amount
        """
        stmt = select(
            FundEntry.fund_type,
            FundEntry.entry_type,
            func.sum(FundEntry.amount),
        ).group_by(FundEntry.fund_type, FundEntry.entry_type)
        result = await self.session.execute(stmt)
        return {
            (fund_type, entry_type): Decimal(str(total or 0))
            for fund_type, entry_type, total in result.all()
        }

    async def get_order_entries(self, order_id: str) -> list[FundEntry]:
        """Get the fund entries created for an order."""
        stmt = (
            select(FundEntry)
            .where(FundEntry.order_id == order_id)
            .order_by(FundEntry.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
