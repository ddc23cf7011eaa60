"""
Priority processor.

Spends a user's banked points on virtual referrals, one per
``points_per_virtual_tree`` points, until the per-user cap is reached.
Points that cannot buy a virtual referral stay banked; they are only ever
turned into cash by an explicit conversion.

Settlement runs with the owner's row locked, so two settlements of the
same user can never spend the same balance twice.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.config.constants import VIRTUAL_USER_EMAIL_DOMAIN
from ledger.models.enums import PointsTransactionType
from ledger.models.user import RealUser, VirtualUser
from ledger.repositories.points_transaction_repository import (
    PointsTransactionRepository,
)
from ledger.repositories.user_repository import UserRepository
from ledger.services.settings_snapshot import (
    ProgramSettingsSnapshot,
    load_settings_snapshot,
)
from ledger.services.tree.placement import TreePlacementService
from ledger.utils.db_decorators import with_rollback_on_error
from ledger.utils.exceptions import (
    FeatureDisabledError,
    InsufficientPointsError,
    UserNotFoundError,
    ValidationError,
    VirtualTreeLimitError,
)
from ledger.utils.referral_codes import virtual_referral_code


class StopReason(StrEnum):
    """Why a settlement loop stopped."""

    DISABLED = "virtual_trees_disabled"
    AUTO_CREATE_DISABLED = "auto_create_disabled"
    INSUFFICIENT_POINTS = "insufficient_points"
    LIMIT_REACHED = "limit_reached"


@dataclass
class SettlementResult:
    """Result of settling a user's points."""

    user_id: int
    virtual_user_ids: list[int] = field(default_factory=list)
    points_spent: int = 0
    points_wallet: int = 0
    stop_reason: str | None = None

    @property
    def virtual_trees_created(self) -> int:
        """Number of virtual referrals minted by this settlement."""
        return len(self.virtual_user_ids)


class PriorityProcessor:
    """Converts banked points into virtual referrals."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize priority processor."""
        self.session = session
        self.user_repo = UserRepository(session)
        self.points_repo = PointsTransactionRepository(session)
        self.placement = TreePlacementService(session)

    @with_rollback_on_error
    async def settle(self, user_id: int) -> SettlementResult:
        """
        Settle a user's banked points.

        Args:
            user_id: Real user ID

        Returns:
            Settlement result

        Raises:
            SettingsUnavailableError: If no settings are published
            UserNotFoundError: If the user does not exist
        """
        snapshot = await load_settings_snapshot(self.session)
        user = await self.lock_real_user(user_id)
        result = await self.settle_locked(user, snapshot)
        await self.session.commit()
        return result

    async def settle_locked(
        self, user: RealUser, snapshot: ProgramSettingsSnapshot
    ) -> SettlementResult:
        """
        Settlement loop for a user whose row is already locked.

        Does not commit: the caller owns the transaction.

        Args:
            user: Locked real user
            snapshot: Settings in force for this operation

        Returns:
            Settlement result
        """
        virtual = snapshot.virtual_trees
        result = SettlementResult(user_id=user.id)

        while True:
            if not virtual.enabled:
                result.stop_reason = StopReason.DISABLED
                break
            if not virtual.auto_create_enabled:
                result.stop_reason = StopReason.AUTO_CREATE_DISABLED
                break
            if user.virtual_referrals_created >= virtual.max_virtual_trees_per_user:
                result.stop_reason = StopReason.LIMIT_REACHED
                break
            if user.points_wallet < virtual.points_per_virtual_tree:
                result.stop_reason = StopReason.INSUFFICIENT_POINTS
                break

            virtual_user = await self._mint_virtual_referral(user, snapshot)
            result.virtual_user_ids.append(virtual_user.id)
            result.points_spent += virtual.points_per_virtual_tree

        result.points_wallet = user.points_wallet

        if result.virtual_trees_created:
            logger.info(
                "Points settled into virtual referrals",
                extra={
                    "user_id": user.id,
                    "virtual_trees_created": result.virtual_trees_created,
                    "points_spent": result.points_spent,
                    "points_wallet": user.points_wallet,
                    "stop_reason": result.stop_reason,
                },
            )
        return result

    @with_rollback_on_error
    async def redeem_virtual_referral(self, user_id: int) -> VirtualUser:
        """
        Spend points on a single virtual referral on user request.

        Works whether or not automatic creation is enabled.

        Args:
            user_id: Real user ID

        Returns:
            Created virtual user

        Raises:
            FeatureDisabledError: If virtual referrals are disabled
            VirtualTreeLimitError: If the user is at the cap
            InsufficientPointsError: If the wallet cannot cover the cost
        """
        snapshot = await load_settings_snapshot(self.session)
        virtual = snapshot.virtual_trees
        if not virtual.enabled:
            raise FeatureDisabledError("Virtual referrals are disabled")

        user = await self.lock_real_user(user_id)
        if user.virtual_referrals_created >= virtual.max_virtual_trees_per_user:
            raise VirtualTreeLimitError(virtual.max_virtual_trees_per_user)
        if user.points_wallet < virtual.points_per_virtual_tree:
            raise InsufficientPointsError(
                available=user.points_wallet,
                requested=virtual.points_per_virtual_tree,
            )

        virtual_user = await self._mint_virtual_referral(user, snapshot)
        await self.session.commit()

        logger.info(
            f"User {user.id} redeemed {virtual.points_per_virtual_tree} points "
            f"for virtual referral {virtual_user.id}"
        )
        return virtual_user

    async def lock_real_user(self, user_id: int) -> RealUser:
        """
        Lock a real user's row for the rest of the transaction.

        Raises:
            UserNotFoundError: If the user does not exist
            ValidationError: If the user is virtual
        """
        user = await self.user_repo.get_for_update(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if not isinstance(user, RealUser):
            raise ValidationError(f"User {user_id} is virtual and holds no points")
        return user

    async def _mint_virtual_referral(
        self, owner: RealUser, snapshot: ProgramSettingsSnapshot
    ) -> VirtualUser:
        """Place a new virtual user under the owner and pay for it."""
        cost = snapshot.virtual_trees.points_per_virtual_tree
        sequence = owner.virtual_referrals_created + 1

        slot = await self.placement.place_new_user(owner.id)
        virtual_user = VirtualUser(
            name=f"{owner.name}-Virtual-{sequence}",
            email=f"virtual-{owner.id}-{sequence}@{VIRTUAL_USER_EMAIL_DOMAIN}",
            referral_code=virtual_referral_code(owner.id, sequence),
            referred_by=owner.referral_code,
            original_owner_id=owner.id,
        )
        slot.apply_to(virtual_user)
        await self.user_repo.add(virtual_user)

        owner.points_wallet -= cost
        owner.virtual_referrals_created = sequence
        await self.points_repo.append(
            user_id=owner.id,
            type=PointsTransactionType.REDEEMED_FOR_VIRTUAL,
            points=-cost,
            balance_after=owner.points_wallet,
            description=f"Redeemed {cost} points for virtual referral #{sequence}",
            virtual_user_id=virtual_user.id,
        )

        logger.debug(
            "Virtual referral created",
            extra={
                "owner_id": owner.id,
                "virtual_user_id": virtual_user.id,
                "tree_parent_id": virtual_user.tree_parent_id,
                "tree_level": virtual_user.tree_level,
            },
        )
        return virtual_user

