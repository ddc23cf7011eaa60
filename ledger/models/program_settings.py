"""
Program settings models.

Versioned configuration of the rewards program. Every admin change
publishes a new version row; the highest version is the live one. The
ledger core only ever reads these rows.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger.models.base import Base
from ledger.models.types import MoneyType, RatePercentType


class ProgramSettings(Base):
    """
    ProgramSettings entity - one published settings version.

    Attributes:
        version: Monotonic version number (highest is live)
        direct_commission_percent: Share paid to the direct referrer
        tree_commission_pool_percent: Cap on the summed tree payout
        trust_fund_percent: Fixed Trust Fund allocation
        development_fund_percent: Fixed Development Fund allocation
        total_allocation_percent: Total share of an order distributed
        virtual_trees_enabled: Virtual referrals feature flag
        points_per_virtual_tree: Points spent per virtual referral
        max_virtual_trees_per_user: Per-user virtual referral cap
        virtual_auto_create_enabled: Settle points automatically on award
        cash_conversion_enabled: Manual conversion feature flag
        points_per_conversion: Points per conversion increment
        cash_per_conversion: Cash credited per increment
        commission_levels: Tree commission halving schedule
    """

    __tablename__ = "program_settings"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    version: Mapped[int] = mapped_column(
        Integer, unique=True, index=True, nullable=False
    )

    # Commission allocation
    direct_commission_percent: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )
    tree_commission_pool_percent: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )
    trust_fund_percent: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )
    development_fund_percent: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )
    total_allocation_percent: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )

    # Virtual tree settings
    virtual_trees_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    points_per_virtual_tree: Mapped[int] = mapped_column(
        Integer, nullable=False
    )
    max_virtual_trees_per_user: Mapped[int] = mapped_column(
        Integer, nullable=False
    )
    virtual_auto_create_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    # Cash conversion settings
    cash_conversion_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    points_per_conversion: Mapped[int] = mapped_column(
        Integer, nullable=False
    )
    cash_per_conversion: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False
    )

    # Metadata
    published_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    commission_levels: Mapped[list["CommissionLevelSetting"]] = relationship(
        back_populates="settings",
        cascade="all, delete-orphan",
        order_by="CommissionLevelSetting.level",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<ProgramSettings(id={self.id}, version={self.version}, "
            f"direct={self.direct_commission_percent}, "
            f"pool={self.tree_commission_pool_percent})>"
        )


class CommissionLevelSetting(Base):
    """One level of the tree commission schedule."""

    __tablename__ = "commission_level_settings"
    __table_args__ = (
        UniqueConstraint(
            "settings_id", "level", name="uq_commission_level_per_version"
        ),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    settings_id: Mapped[int] = mapped_column(
        ForeignKey("program_settings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(
        RatePercentType, nullable=False
    )

    settings: Mapped["ProgramSettings"] = relationship(
        back_populates="commission_levels"
    )
