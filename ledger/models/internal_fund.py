"""
Internal fund models.

The Trust Fund and the Development Fund absorb commission amounts that
have no eligible human recipient. Each fund keeps a running balance and
an entry per allocation.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger.models.base import Base
from ledger.models.types import MoneyType


class InternalFund(Base):
    """Running balance of one internal fund."""

    __tablename__ = "internal_funds"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    fund_type: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<InternalFund(fund_type={self.fund_type}, balance={self.balance})>"


class FundEntry(Base):
    """One allocation into an internal fund."""

    __tablename__ = "fund_entries"
    __table_args__ = (
        Index("idx_fund_entries_fund_created", "fund_type", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    fund_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    order_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
