"""
Ledger service.

Entry point for the boundary events and user actions. Each operation
runs as one unit of work in a fresh session; transient database
conflicts re-run the whole unit a bounded number of times and then
surface as TransientLedgerError.

Usage:
    session_maker = create_session_maker()
    service = LedgerService(session_maker)
    outcome = await service.handle_order_completed(
        OrderCompletedEvent(order_id="ORD-1", purchaser_id=7,
                            order_amount=Decimal("1000"), points=260)
    )
"""

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger.config.settings import settings
from ledger.models.commission_transaction import CommissionTransaction
from ledger.models.enums import CommissionStatus, PointsSource
from ledger.models.user import RealUser, VirtualUser
from ledger.repositories.commission_repository import (
    CommissionTransactionRepository,
)
from ledger.services.commission.engine import CommissionEngine
from ledger.services.points.capabilities import PointsCapabilities
from ledger.services.points.conversion import ConversionResult, ConversionService
from ledger.services.points.ledger import AwardResult, PointsLedger
from ledger.services.points.priority import PriorityProcessor, SettlementResult
from ledger.services.reporting import ReportingService
from ledger.services.tree.registration import UserRegistrationService
from ledger.utils.exceptions import (
    AllocationMismatchError,
    InvalidSettingsError,
    UserNotFoundError,
)
from ledger.utils.retry import retry_on_conflict

# Commission failures worth a visible failed row: the order is known but
# cannot be distributed until data or settings are fixed
RECORDED_COMMISSION_FAILURES = (
    UserNotFoundError,
    AllocationMismatchError,
    InvalidSettingsError,
)


@dataclass(frozen=True)
class OrderCompletedEvent:
    """A paid order delivered by the order subsystem."""

    order_id: str
    purchaser_id: int
    order_amount: Decimal
    points: int = 0
    points_source: PointsSource = PointsSource.ORDER
    source_id: str | None = None


@dataclass
class OrderOutcome:
    """Result of processing a completed order."""

    commission: CommissionTransaction
    award: AwardResult


class LedgerService:
    """Transactional facade over the ledger core."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> None:
        """
        Initialize ledger service.

        Args:
            session_maker: Factory for per-operation sessions
            max_attempts: Conflict retry attempts (default from settings)
            base_delay: Conflict retry base delay (default from settings)
        """
        self.session_maker = session_maker
        self.max_attempts = max_attempts or settings.conflict_retry_attempts
        self.base_delay = (
            settings.conflict_retry_base_delay if base_delay is None else base_delay
        )

    async def _run(self, operation_name: str, unit_of_work):
        """Run a unit of work with conflict retry."""
        return await retry_on_conflict(
            self.session_maker,
            unit_of_work,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            operation_name=operation_name,
        )

    async def register_user(
        self,
        name: str,
        email: str | None = None,
        referral_code: str | None = None,
    ) -> RealUser:
        """Register a user and place them in the tree."""

        async def unit_of_work(session: AsyncSession) -> RealUser:
            return await UserRegistrationService(session).register(
                name=name, email=email, referral_code=referral_code
            )

        return await self._run("register_user", unit_of_work)

    async def handle_order_completed(
        self, event: OrderCompletedEvent
    ) -> OrderOutcome:
        """
        Process a paid order: distribute commission, then award points.

        Both steps are idempotent or retry-safe on their own: commission
        is keyed by the order id and points are only awarded after the
        commission succeeded.
        """
        commission = await self.distribute_commission(
            event.order_id, event.purchaser_id, event.order_amount
        )
        award = await self.award_points(
            event.purchaser_id,
            event.points,
            source=event.points_source,
            source_id=event.source_id,
            order_id=event.order_id,
        )
        return OrderOutcome(commission=commission, award=award)

    async def distribute_commission(
        self,
        order_id: str,
        purchaser_id: int,
        order_amount: Decimal,
    ) -> CommissionTransaction:
        """
        Distribute an order's commission.

        Permanent failures leave a failed transaction row (written in its
        own transaction) before the error is re-raised.
        """

        async def unit_of_work(session: AsyncSession) -> CommissionTransaction:
            return await CommissionEngine(session).distribute_commission(
                order_id, purchaser_id, order_amount
            )

        try:
            return await self._run(f"distribute_commission[{order_id}]", unit_of_work)
        except RECORDED_COMMISSION_FAILURES as e:
            await self._record_commission_failure(
                order_id, purchaser_id, order_amount, e
            )
            raise

    async def _record_commission_failure(
        self,
        order_id: str,
        purchaser_id: int,
        order_amount: Decimal,
        error: Exception,
    ) -> None:
        """Persist a failed commission row for an order."""
        reason = f"{type(error).__name__}: {error}"
        try:
            async with self.session_maker() as session:
                repo = CommissionTransactionRepository(session)
                transaction = await repo.get_by_order_id(order_id)
                if transaction is not None and transaction.is_completed:
                    return
                if transaction is None:
                    transaction = CommissionTransaction(
                        order_id=order_id,
                        purchaser_id=purchaser_id,
                        order_amount=Decimal(str(order_amount)),
                        tree_shares=[],
                    )
                    session.add(transaction)
                transaction.status = CommissionStatus.FAILED.value
                transaction.failure_reason = reason
                await session.commit()
        except Exception as record_error:
            logger.exception(
                f"Could not record commission failure for order {order_id}: "
                f"{record_error}"
            )
            return

        logger.error(
            f"Commission for order {order_id} failed: {reason}",
            extra={"order_id": order_id, "purchaser_id": purchaser_id},
        )

    async def award_points(
        self,
        user_id: int,
        points: int,
        source: PointsSource = PointsSource.ORDER,
        source_id: str | None = None,
        order_id: str | None = None,
    ) -> AwardResult:
        """Award points and settle them."""

        async def unit_of_work(session: AsyncSession) -> AwardResult:
            return await PointsLedger(session).award_points(
                user_id, points, source=source, source_id=source_id, order_id=order_id
            )

        return await self._run(f"award_points[{user_id}]", unit_of_work)

    async def settle(self, user_id: int) -> SettlementResult:
        """Settle a user's banked points."""

        async def unit_of_work(session: AsyncSession) -> SettlementResult:
            return await PriorityProcessor(session).settle(user_id)

        return await self._run(f"settle[{user_id}]", unit_of_work)

    async def redeem_virtual_referral(self, user_id: int) -> VirtualUser:
        """Spend points on one virtual referral on user request."""

        async def unit_of_work(session: AsyncSession) -> VirtualUser:
            return await PriorityProcessor(session).redeem_virtual_referral(user_id)

        return await self._run(f"redeem_virtual_referral[{user_id}]", unit_of_work)

    async def convert_points_to_cash(
        self, user_id: int, points: int
    ) -> ConversionResult:
        """Convert banked points into cash on user request."""

        async def unit_of_work(session: AsyncSession) -> ConversionResult:
            return await ConversionService(session).convert_points_to_cash(
                user_id, points
            )

        return await self._run(f"convert_points_to_cash[{user_id}]", unit_of_work)

    async def get_capabilities(self, user_id: int) -> PointsCapabilities:
        """Project what a user's points could buy right now."""
        async with self.session_maker() as session:
            return await ReportingService(session).get_capabilities(user_id)
