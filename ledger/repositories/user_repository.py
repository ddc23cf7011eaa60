"""
User repository.

Data access layer for the User variants, including the tree queries used
by placement and commission distribution.
"""

from decimal import Decimal

from sqlalchemy import Row, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.user import RealUser, User, VirtualUser
from ledger.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository with referral and tree queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_by_referral_code(
        self, referral_code: str
    ) -> User | None:
        """
        Get user by referral code.

        Args:
            referral_code: Referral code

        Returns:
            User or None
        """
        if not referral_code:
            return None
        return await self.get_by(referral_code=referral_code.strip().upper())

    async def get_many(self, user_ids: list[int]) -> dict[int, User]:
        """
        Load several users at once.

        Args:
            user_ids: User IDs

        Returns:
            Mapping of id to user for the ids that exist
        """
        if not user_ids:
            return {}
        stmt = select(User).where(User.id.in_(user_ids))
        result = await self.session.execute(stmt)
        return {user.id: user for user in result.scalars().all()}

    async def get_program_root(self) -> User | None:
        """
        Get the root of the global referral tree.

        The earliest placed user without a tree parent.

        Returns:
            Root user or None if the tree is empty
        """
        stmt = (
            select(User)
            .where(User.tree_parent_id.is_(None), User.tree_level == 1)
            .order_by(User.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tree_slots(self, user_ids: list[int]) -> list[Row]:
        """
        Read the live slot counters of tree nodes.

        Column-level select so values come from the database even when the
        users are already loaded in the session.

        Args:
            user_ids: Node IDs

        Returns:
            Rows of (id, tree_child_count, tree_level, tree_path)
        """
        if not user_ids:
            return []
        stmt = select(
            User.id, User.tree_child_count, User.tree_level, User.tree_path
        ).where(User.id.in_(user_ids))
        result = await self.session.execute(stmt)
        return list(result.all())

    async def get_children_slots(self, parent_ids: list[int]) -> list[Row]:
        """
        Read the direct children of several tree nodes.

        Args:
            parent_ids: Parent node IDs

        Returns:
            Rows of (id, tree_parent_id, tree_position, tree_child_count,
            tree_level, tree_path) ordered by parent and position
        """
        if not parent_ids:
            return []
        stmt = (
            select(
                User.id,
                User.tree_parent_id,
                User.tree_position,
                User.tree_child_count,
                User.tree_level,
                User.tree_path,
            )
            .where(User.tree_parent_id.in_(parent_ids))
            .order_by(User.tree_parent_id, User.tree_position)
        )
        result = await self.session.execute(stmt)
        return list(result.all())

    async def get_tree_children(self, parent_id: int) -> list[User]:
        """
        Get the ordered direct children of a tree node.

        Args:
            parent_id: Parent node ID

        Returns:
            Children ordered by tree position
        """
        stmt = (
            select(User)
            .where(User.tree_parent_id == parent_id)
            .order_by(User.tree_position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim_child_slot(
        self, parent_id: int, branching_factor: int
    ) -> int | None:
        """
        Atomically append a child slot to a parent if it is not full.

        Compare-and-swap on the parent's child counter: the UPDATE only
        matches while the counter is below the branching factor, so two
        concurrent claims can never receive the same position.

        Args:
            parent_id: Parent node ID
            branching_factor: Maximum children per node

        Returns:
            The claimed 0-based position, or None if the parent is full
        """
        stmt = (
            update(User)
            .where(
                User.id == parent_id,
                User.tree_child_count < branching_factor,
            )
            .values(tree_child_count=User.tree_child_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return None

        count_stmt = select(User.tree_child_count).where(User.id == parent_id)
        new_count = (await self.session.execute(count_stmt)).scalar_one()
        return new_count - 1

    async def get_virtual_referrals(self, owner_id: int) -> list[VirtualUser]:
        """
        Get the virtual referrals owned by a user.

        Args:
            owner_id: Owning real user ID

        Returns:
            Virtual users in creation order
        """
        stmt = (
            select(VirtualUser)
            .where(VirtualUser.original_owner_id == owner_id)
            .order_by(VirtualUser.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def credit_cash(
        self,
        user_id: int,
        amount: Decimal,
        direct_commission: Decimal = Decimal("0"),
        tree_commission: Decimal = Decimal("0"),
    ) -> bool:
        """
        Atomically credit a real user's cash wallet.

        In-database increment, so concurrent credits to the same wallet
        are never lost.

        Args:
            user_id: Real user ID
            amount: Cash to add to wallet_cash
            direct_commission: Portion to add to direct_commission_earned
            tree_commission: Portion to add to tree_commission_earned

        Returns:
            True if the wallet was credited
        """
        stmt = (
            update(RealUser)
            .where(RealUser.id == user_id)
            .values(
                wallet_cash=RealUser.wallet_cash + amount,
                direct_commission_earned=(
                    RealUser.direct_commission_earned + direct_commission
                ),
                tree_commission_earned=(
                    RealUser.tree_commission_earned + tree_commission
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_real_user_ids_after(
        self, last_id: int = 0, limit: int = 500
    ) -> list[int]:
        """
        Get the next batch of real user ids (keyset pagination).

        Args:
            last_id: Last id of the previous batch
            limit: Batch size

        Returns:
            Ids greater than last_id in ascending order
        """
        stmt = (
            select(RealUser.id)
            .where(RealUser.id > last_id)
            .order_by(RealUser.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
