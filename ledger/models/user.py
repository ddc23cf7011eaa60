"""
User model.

Users come in two variants stored in one table and told apart by the
``kind`` discriminator:

- RealUser: a person who signed up, owns a cash wallet and can withdraw.
- VirtualUser: a placeholder minted by spending points. It occupies a tree
  slot, is owned by exactly one real user and never logs in or withdraws.

Tree placement fields (parent, level, position, path) are assigned once,
before or at the first persist, and never change afterwards.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger.models.base import Base
from ledger.models.enums import UserKind
from ledger.models.types import MoneyType


class User(Base):
    """User model - common columns of both variants."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "wallet_cash >= 0", name="check_user_wallet_cash_non_negative"
        ),
        CheckConstraint(
            "points_wallet >= 0", name="check_user_points_wallet_non_negative"
        ),
        CheckConstraint(
            "tree_child_count >= 0", name="check_user_tree_child_count_non_negative"
        ),
        UniqueConstraint(
            "tree_parent_id", "tree_position", name="uq_users_tree_slot"
        ),
        Index("idx_users_tree_level", "tree_level"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Variant discriminator
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )

    # Identity
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )

    # Referral
    referral_code: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, index=True
    )
    referred_by: Mapped[str | None] = mapped_column(
        String(32), nullable=True, index=True
    )

    # Cash balances
    wallet_cash: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    direct_commission_earned: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    tree_commission_earned: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )

    # Points
    points_wallet: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_points_earned: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    virtual_referrals_created: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    # Tree placement (level 0 = not placed yet, roots are level 1)
    tree_parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    tree_level: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    tree_position: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    # Incremented atomically when a child slot is claimed
    tree_child_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    # Ancestor ids from root to parent, e.g. "/1/4/9/"; "/" for roots
    tree_path: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )

    # Status
    suspended: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, index=True
    )
    suspended_reason: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )
    suspended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    __mapper_args__ = {
        "polymorphic_on": "kind",
    }

    @property
    def is_placed(self) -> bool:
        """Whether the user already occupies a tree slot."""
        return self.tree_level > 0

    @property
    def is_tree_root(self) -> bool:
        """Whether the user is a root of the referral tree."""
        return self.is_placed and self.tree_parent_id is None

    @property
    def ancestor_ids(self) -> list[int]:
        """
        Tree ancestors, nearest first.

        Read from the materialized path so the chain can be walked even
        when an intermediate ancestor record has been deleted.
        """
        if not self.tree_path:
            return []
        ids = [int(part) for part in self.tree_path.strip("/").split("/") if part]
        ids.reverse()
        return ids

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<{type(self).__name__}(id={self.id}, "
            f"referral_code={self.referral_code!r}, "
            f"tree_level={self.tree_level}, "
            f"tree_parent_id={self.tree_parent_id})>"
        )


class RealUser(User):
    """A signed-up person: earns commissions, owns points, can withdraw."""

    __mapper_args__ = {
        "polymorphic_identity": UserKind.REAL.value,
    }


class VirtualUser(User):
    """
    A system-minted tree placeholder.

    Commission reaching a virtual user is passed through to its owner.
    """

    original_owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    __mapper_args__ = {
        "polymorphic_identity": UserKind.VIRTUAL.value,
    }
