"""
Commission transaction models.

One CommissionTransaction per processed order. The order id is unique,
which is what makes commission distribution idempotent.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger.models.base import Base
from ledger.models.enums import CommissionStatus, TreeShareOutcome
from ledger.models.types import MoneyType, RatePercentType


class CommissionTransaction(Base):
    """
    CommissionTransaction entity.

    Allocation invariant for completed rows:
        direct_commission_amount + sum(tree_shares.amount)
        + trust_fund_amount + development_fund_amount
        == order_amount * total_allocation_percent / 100

    When there is no eligible direct referrer, direct_commission_amount is
    zero and the amount is part of trust_fund_amount instead
    (direct_routed_to_trust is set).

    Attributes:
        order_id: External order id (unique)
        purchaser_id: User who placed the order
        order_amount: Paid order amount
        settings_version: Program settings version used
        direct_recipient_id: Direct referrer credited, if any
        direct_commission_amount: Amount credited to the direct referrer
        direct_routed_to_trust: Direct commission went to the Trust Fund
        trust_fund_amount: Total credited to the Trust Fund
        development_fund_amount: Total credited to the Development Fund
        total_allocated: Sum of all allocations
        status: pending/completed/failed
        failure_reason: Last permanent failure, for failed rows
    """

    __tablename__ = "commission_transactions"
    __table_args__ = (
        Index("idx_commission_tx_purchaser_created", "purchaser_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    order_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    purchaser_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )
    order_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    settings_version: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )

    # Direct commission
    direct_recipient_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    direct_commission_amount: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    direct_routed_to_trust: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # Internal funds
    trust_fund_amount: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    development_fund_amount: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    total_allocated: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default=CommissionStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    tree_shares: Mapped[list["CommissionTreeShare"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="CommissionTreeShare.level",
        lazy="selectin",
    )

    @property
    def is_completed(self) -> bool:
        """Whether the commission has been fully applied."""
        return self.status == CommissionStatus.COMPLETED.value

    @property
    def tree_commission_total(self) -> Decimal:
        """Sum of all tree commission shares."""
        return sum((share.amount for share in self.tree_shares), Decimal("0"))

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<CommissionTransaction(id={self.id}, order_id={self.order_id!r}, "
            f"order_amount={self.order_amount}, status={self.status})>"
        )


class CommissionTreeShare(Base):
    """
    One paid level of tree commission.

    recipient_id is the ancestor occupying the level; paid_to_id is the
    user whose wallet was credited (the owner when the ancestor is virtual).
    """

    __tablename__ = "commission_tree_shares"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("commission_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )
    paid_to_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    outcome: Mapped[str] = mapped_column(
        String(20), default=TreeShareOutcome.PAID.value, nullable=False
    )

    transaction: Mapped["CommissionTransaction"] = relationship(
        back_populates="tree_shares"
    )
