"""
PointsTransaction model.

Append-only points ledger. For a given user, entries ordered by
(created_at, id) satisfy balance_after[n] == balance_after[n-1] + points[n]
and the last balance_after equals the live points wallet.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger.models.base import Base
from ledger.models.types import MoneyType


class PointsTransaction(Base):
    """
    PointsTransaction entity.

    Attributes:
        user_id: Owner of the points wallet
        type: earned / redeemed_for_virtual / manual_converted_to_cash
        points: Signed delta
        balance_after: Points wallet after this entry
        cash_amount: Cash credited (conversions only)
        source: Earning source (earned only)
        source_id: Catalog item id (earned only)
        source_order_id: Order that earned the points
        virtual_user_id: Virtual referral minted (redemptions only)
        description: Human readable description
    """

    __tablename__ = "points_transactions"
    __table_args__ = (
        Index("idx_points_tx_user_created", "user_id", "created_at"),
        Index("idx_points_tx_type_created", "type", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    cash_amount: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )

    # Earned points provenance
    source: Mapped[str | None] = mapped_column(String(40), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_order_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )

    # Redemption target
    virtual_user_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<PointsTransaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.type}, points={self.points}, "
            f"balance_after={self.balance_after})>"
        )
