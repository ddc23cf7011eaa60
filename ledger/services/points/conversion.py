"""
Points to cash conversion.

Manual, user-triggered exchange of banked points for cash. Points are
converted in whole increments of ``points_per_conversion`` only, so a
conversion never changes ``points_wallet mod points_per_conversion``.
"""

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.enums import PointsTransactionType
from ledger.repositories.points_transaction_repository import (
    PointsTransactionRepository,
)
from ledger.services.points.priority import PriorityProcessor
from ledger.services.settings_snapshot import load_settings_snapshot
from ledger.utils.db_decorators import with_rollback_on_error
from ledger.utils.exceptions import (
    FeatureDisabledError,
    InsufficientPointsError,
    InvalidAmountError,
    InvalidIncrementError,
)


@dataclass(frozen=True)
class ConversionResult:
    """Result of a points to cash conversion."""

    user_id: int
    points_converted: int
    cash_credited: Decimal
    points_wallet: int
    wallet_cash: Decimal


def largest_convertible(points_wallet: int, points_per_conversion: int) -> int:
    """Largest amount of points convertible right now."""
    return (points_wallet // points_per_conversion) * points_per_conversion


class ConversionService:
    """Converts banked points into wallet cash."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize conversion service."""
        self.session = session
        self.points_repo = PointsTransactionRepository(session)
        self.priority = PriorityProcessor(session)

    @with_rollback_on_error
    async def convert_points_to_cash(
        self, user_id: int, points: int
    ) -> ConversionResult:
        """
        Convert points into cash.

        Args:
            user_id: Real user ID
            points: Points to convert, a multiple of points_per_conversion

        Returns:
            Conversion result

        Raises:
            FeatureDisabledError: If conversion is disabled
            InvalidAmountError: If points is not positive
            InsufficientPointsError: If the wallet cannot cover the amount
            InvalidIncrementError: If points is not a whole number of
                increments (carries the largest convertible amount)
        """
        snapshot = await load_settings_snapshot(self.session)
        conversion = snapshot.cash_conversion

        if not conversion.enabled:
            raise FeatureDisabledError("Points to cash conversion is disabled")
        if points <= 0:
            raise InvalidAmountError(f"Points to convert must be positive: {points}")

        user = await self.priority.lock_real_user(user_id)

        if user.points_wallet < points:
            raise InsufficientPointsError(
                available=user.points_wallet, requested=points
            )
        if points % conversion.points_per_conversion != 0:
            raise InvalidIncrementError(
                increment=conversion.points_per_conversion,
                largest_convertible=largest_convertible(
                    user.points_wallet, conversion.points_per_conversion
                ),
            )

        increments = points // conversion.points_per_conversion
        cash = conversion.cash_per_conversion * increments

        user.points_wallet -= points
        user.wallet_cash = user.wallet_cash + cash
        await self.points_repo.append(
            user_id=user.id,
            type=PointsTransactionType.MANUAL_CONVERTED_TO_CASH,
            points=-points,
            balance_after=user.points_wallet,
            cash_amount=cash,
            description=f"Converted {points} points to {cash} cash",
        )
        await self.session.commit()

        logger.info(
            "Points converted to cash",
            extra={
                "user_id": user.id,
                "points": points,
                "cash": str(cash),
                "points_wallet": user.points_wallet,
            },
        )
        return ConversionResult(
            user_id=user.id,
            points_converted=points,
            cash_credited=cash,
            points_wallet=user.points_wallet,
            wallet_cash=user.wallet_cash,
        )
