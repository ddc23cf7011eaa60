"""
Points ledger.

Awards points for purchases. Every award is recorded as an ``earned``
entry and immediately settled by the priority processor in the same
transaction, so a user's points are settled before the award returns.
"""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.enums import PointsSource, PointsTransactionType
from ledger.repositories.points_transaction_repository import (
    PointsTransactionRepository,
)
from ledger.services.points.priority import PriorityProcessor, SettlementResult
from ledger.services.settings_snapshot import load_settings_snapshot
from ledger.utils.db_decorators import with_rollback_on_error


@dataclass
class AwardResult:
    """Result of awarding points."""

    user_id: int
    points_awarded: int
    points_wallet: int | None = None
    settlement: SettlementResult | None = None

    @property
    def virtual_trees_created(self) -> int:
        """Virtual referrals minted while settling this award."""
        return self.settlement.virtual_trees_created if self.settlement else 0


class PointsLedger:
    """Records earned points and settles them."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize points ledger."""
        self.session = session
        self.points_repo = PointsTransactionRepository(session)
        self.priority = PriorityProcessor(session)

    @with_rollback_on_error
    async def award_points(
        self,
        user_id: int,
        points: int,
        source: PointsSource = PointsSource.ORDER,
        source_id: str | None = None,
        order_id: str | None = None,
    ) -> AwardResult:
        """
        Award points to a user and settle them.

        Non-positive awards are a no-op, as is a second award for an
        order the user already earned points for.

        Args:
            user_id: Real user ID
            points: Points to award
            source: What earned the points
            source_id: Catalog item id
            order_id: Order that earned the points

        Returns:
            Award result including the settlement

        Raises:
            SettingsUnavailableError: If no settings are published
            UserNotFoundError: If the user does not exist
        """
        if points <= 0:
            logger.debug(f"Ignoring non-positive points award {points} for user {user_id}")
            return AwardResult(user_id=user_id, points_awarded=0)

        snapshot = await load_settings_snapshot(self.session)
        user = await self.priority.lock_real_user(user_id)

        if order_id and await self.points_repo.has_earned_for_order(user.id, order_id):
            logger.info(
                f"Points for order {order_id} already awarded to user {user.id}"
            )
            return AwardResult(
                user_id=user.id, points_awarded=0, points_wallet=user.points_wallet
            )

        user.points_wallet += points
        user.total_points_earned += points
        await self.points_repo.append(
            user_id=user.id,
            type=PointsTransactionType.EARNED,
            points=points,
            balance_after=user.points_wallet,
            description=_earned_description(points, source, order_id),
            source=source.value,
            source_id=source_id,
            source_order_id=order_id,
        )

        settlement = await self.priority.settle_locked(user, snapshot)
        await self.session.commit()

        logger.info(
            "Points awarded",
            extra={
                "user_id": user.id,
                "points": points,
                "source": source.value,
                "order_id": order_id,
                "points_wallet": user.points_wallet,
                "virtual_trees_created": settlement.virtual_trees_created,
            },
        )
        return AwardResult(
            user_id=user.id,
            points_awarded=points,
            points_wallet=user.points_wallet,
            settlement=settlement,
        )


def _earned_description(
    points: int, source: PointsSource, order_id: str | None
) -> str:
    """Human readable description of an award."""
    label = source.value.replace("_", " ")
    if order_id:
        return f"Earned {points} points from {label} (order {order_id})"
    return f"Earned {points} points from {label}"
