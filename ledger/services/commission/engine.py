"""
Commission engine.

Applies the commission of a paid order in one transaction: the
transaction record, every wallet credit and every fund credit are
committed together or not at all. Distribution is idempotent on the
order id: a completed order is returned unchanged when re-delivered.
"""

from datetime import UTC, datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.config.settings import settings
from ledger.models.commission_transaction import (
    CommissionTransaction,
    CommissionTreeShare,
)
from ledger.models.enums import (
    CommissionStatus,
    FundEntryType,
    FundType,
    TreeShareOutcome,
)
from ledger.models.user import RealUser, User, VirtualUser
from ledger.repositories.commission_repository import (
    CommissionTransactionRepository,
)
from ledger.repositories.fund_repository import InternalFundRepository
from ledger.repositories.user_repository import UserRepository
from ledger.services.commission.allocation import (
    CommissionAllocation,
    TreePayee,
    allocate_commission,
)
from ledger.services.settings_snapshot import load_settings_snapshot
from ledger.utils.db_decorators import with_rollback_on_error
from ledger.utils.exceptions import InvalidAmountError, UserNotFoundError


class CommissionEngine:
    """
    Distributes order commission to referrers and internal funds.

    Usage:
        engine = CommissionEngine(session)
        transaction = await engine.distribute_commission(
            "ORD-1", purchaser_id=7, order_amount=Decimal("1000")
        )
    """

    def __init__(
        self, session: AsyncSession, allocation_epsilon: Decimal | None = None
    ) -> None:
        """
        Initialize commission engine.

        Args:
            session: Database session
            allocation_epsilon: Rounding tolerance (default from settings)
        """
        self.session = session
        self.user_repo = UserRepository(session)
        self.commission_repo = CommissionTransactionRepository(session)
        self.fund_repo = InternalFundRepository(session)
        self.allocation_epsilon = (
            settings.allocation_epsilon
            if allocation_epsilon is None
            else allocation_epsilon
        )

    @with_rollback_on_error
    async def distribute_commission(
        self,
        order_id: str,
        purchaser_id: int,
        order_amount: Decimal,
    ) -> CommissionTransaction:
        """
        Distribute the commission of a completed order.

        Args:
            order_id: External order id (idempotency key)
            purchaser_id: User who paid the order
            order_amount: Paid amount

        Returns:
            Completed commission transaction (the existing one if the order
            was already processed)

        Raises:
            InvalidAmountError: If order id or amount is invalid
            SettingsUnavailableError: If no settings are published
            UserNotFoundError: If the purchaser does not exist
            AllocationMismatchError: If the split does not add up
        """
        if not order_id:
            raise InvalidAmountError("Order id is required")
        order_amount = Decimal(str(order_amount))
        if order_amount <= 0:
            raise InvalidAmountError(
                f"Order amount must be positive: {order_amount}"
            )

        existing = await self.commission_repo.get_by_order_id(order_id)
        if existing is not None and existing.is_completed:
            logger.info(
                f"Commission for order {order_id} already distributed, "
                f"returning existing transaction {existing.id}"
            )
            return existing

        snapshot = await load_settings_snapshot(self.session)

        purchaser = await self.user_repo.get_by_id(purchaser_id)
        if purchaser is None:
            raise UserNotFoundError(
                purchaser_id, f"Purchaser not found: {purchaser_id}"
            )

        # Claim the order id before any credit so a concurrent delivery of
        # the same order fails on the unique key
        transaction = existing or CommissionTransaction(
            order_id=order_id,
            purchaser_id=purchaser_id,
            order_amount=order_amount,
            tree_shares=[],
        )
        transaction.order_amount = order_amount
        transaction.purchaser_id = purchaser_id
        transaction.status = CommissionStatus.PENDING.value
        transaction.failure_reason = None
        await self.commission_repo.add(transaction)

        direct_recipient = await self._resolve_direct_referrer(purchaser)
        tree_payees = await self._resolve_tree_payees(
            purchaser, snapshot.tree_levels_count
        )

        allocation = allocate_commission(
            order_amount=order_amount,
            snapshot=snapshot,
            direct_recipient_id=direct_recipient.id if direct_recipient else None,
            tree_payees=tree_payees,
            epsilon=self.allocation_epsilon,
        )

        await self._apply_credits(order_id, allocation)
        self._fill_transaction(transaction, allocation, snapshot.version)
        await self.session.commit()

        logger.info(
            "Commission distributed",
            extra={
                "order_id": order_id,
                "purchaser_id": purchaser_id,
                "order_amount": str(order_amount),
                "direct": str(allocation.direct_paid),
                "tree": str(allocation.tree_paid),
                "trust_fund": str(allocation.trust_fund_amount),
                "development_fund": str(allocation.development_fund_amount),
                "settings_version": snapshot.version,
                "skipped_levels": list(allocation.skipped_levels),
                "forfeited_levels": list(allocation.forfeited_levels),
                "pool_exhausted_at_level": allocation.pool_exhausted_at_level,
            },
        )
        return transaction

    async def _resolve_direct_referrer(self, purchaser: User) -> RealUser | None:
        """
        Find the real user eligible for the direct commission.

        Returns:
            The active real referrer, or None to route to the Trust Fund
        """
        if not purchaser.referred_by:
            return None

        referrer = await self.user_repo.get_by_referral_code(purchaser.referred_by)
        if referrer is None:
            logger.warning(
                f"Direct referrer {purchaser.referred_by!r} of user "
                f"{purchaser.id} not found, direct commission to Trust Fund"
            )
            return None
        if not isinstance(referrer, RealUser):
            logger.info(
                f"Direct referrer {referrer.id} of user {purchaser.id} is "
                f"virtual, direct commission to Trust Fund"
            )
            return None
        if referrer.suspended:
            logger.info(
                f"Direct referrer {referrer.id} is suspended, "
                f"direct commission to Trust Fund"
            )
            return None
        return referrer

    async def _resolve_tree_payees(
        self, purchaser: User, levels: int
    ) -> list[TreePayee | None]:
        """
        Resolve who is paid at each ancestor level, nearest first.

        A missing ancestor record yields None for its level only; the walk
        continues with the next ancestor in the placement path.
        """
        ancestor_ids = purchaser.ancestor_ids[:levels]
        ancestors = await self.user_repo.get_many(ancestor_ids)

        owner_ids = [
            ancestor.original_owner_id
            for ancestor in ancestors.values()
            if isinstance(ancestor, VirtualUser) and ancestor.original_owner_id
        ]
        owners = await self.user_repo.get_many(
            [owner_id for owner_id in owner_ids if owner_id not in ancestors]
        )
        owners.update(ancestors)

        payees: list[TreePayee | None] = []
        for level, ancestor_id in enumerate(ancestor_ids, start=1):
            ancestor = ancestors.get(ancestor_id)
            if ancestor is None:
                logger.warning(
                    f"Ancestor {ancestor_id} at level {level} of user "
                    f"{purchaser.id} not found, skipping level"
                )
                payees.append(None)
            elif isinstance(ancestor, VirtualUser):
                owner = owners.get(ancestor.original_owner_id)
                payees.append(
                    TreePayee(
                        recipient_id=ancestor.id,
                        paid_to_id=owner.id if self._is_eligible(owner) else None,
                        outcome=TreeShareOutcome.PASSED_THROUGH,
                    )
                )
            else:
                payees.append(
                    TreePayee(
                        recipient_id=ancestor.id,
                        paid_to_id=ancestor.id if self._is_eligible(ancestor) else None,
                    )
                )
        return payees

    @staticmethod
    def _is_eligible(user: User | None) -> bool:
        """Only active real users receive cash."""
        return isinstance(user, RealUser) and not user.suspended

    async def _apply_credits(
        self, order_id: str, allocation: CommissionAllocation
    ) -> None:
        """Credit wallets and funds in the current transaction."""
        if allocation.direct_paid > 0:
            await self.user_repo.credit_cash(
                allocation.direct_recipient_id,
                allocation.direct_paid,
                direct_commission=allocation.direct_paid,
            )

        for share in allocation.tree_shares:
            await self.user_repo.credit_cash(
                share.paid_to_id,
                share.amount,
                tree_commission=share.amount,
            )

        await self.fund_repo.credit(
            FundType.TRUST,
            allocation.trust_fund_base + allocation.remainder,
            FundEntryType.ORDER_ALLOCATION,
            order_id=order_id,
            description=f"Trust Fund share of order {order_id}",
        )
        await self.fund_repo.credit(
            FundType.TRUST,
            allocation.unclaimed_direct,
            FundEntryType.UNCLAIMED_DIRECT,
            order_id=order_id,
            description=f"No eligible direct referrer for order {order_id}",
        )
        await self.fund_repo.credit(
            FundType.TRUST,
            allocation.tree_unclaimed,
            FundEntryType.UNCLAIMED_TREE,
            order_id=order_id,
            description=f"Unpaid tree commission of order {order_id}",
        )
        await self.fund_repo.credit(
            FundType.DEVELOPMENT,
            allocation.development_fund_amount,
            FundEntryType.ORDER_ALLOCATION,
            order_id=order_id,
            description=f"Development Fund share of order {order_id}",
        )

    @staticmethod
    def _fill_transaction(
        transaction: CommissionTransaction,
        allocation: CommissionAllocation,
        settings_version: int,
    ) -> None:
        """Record the allocation on the transaction and complete it."""
        transaction.settings_version = settings_version
        transaction.direct_recipient_id = allocation.direct_recipient_id
        transaction.direct_commission_amount = allocation.direct_paid
        transaction.direct_routed_to_trust = allocation.direct_routed_to_trust
        transaction.trust_fund_amount = allocation.trust_fund_amount
        transaction.development_fund_amount = allocation.development_fund_amount
        transaction.total_allocated = allocation.total_allocated
        transaction.tree_shares = [
            CommissionTreeShare(
                recipient_id=share.recipient_id,
                paid_to_id=share.paid_to_id,
                level=share.level,
                percentage=share.percentage,
                amount=share.amount,
                outcome=share.outcome.value,
            )
            for share in allocation.tree_shares
        ]
        transaction.status = CommissionStatus.COMPLETED.value
        transaction.completed_at = datetime.now(UTC)
