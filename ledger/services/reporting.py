"""
Reporting service.

Read-only queries for dashboards and user screens: paginated points and
commission history, internal fund balances, the capability projection,
and audits that re-check the ledger invariants from stored records.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Generic, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.config.settings import settings
from ledger.models.commission_transaction import CommissionTransaction
from ledger.models.enums import FundType, PointsTransactionType
from ledger.models.points_transaction import PointsTransaction
from ledger.models.user import RealUser
from ledger.repositories.commission_repository import (
    CommissionTransactionRepository,
)
from ledger.repositories.fund_repository import InternalFundRepository
from ledger.repositories.points_transaction_repository import (
    PointsTransactionRepository,
)
from ledger.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)
from ledger.repositories.user_repository import UserRepository
from ledger.services.commission.allocation import HUNDRED, money
from ledger.services.points.capabilities import (
    PointsCapabilities,
    project_capabilities,
)
from ledger.services.settings_snapshot import load_settings_snapshot, to_decimal
from ledger.utils.exceptions import UserNotFoundError, ValidationError

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of a history listing."""

    items: list[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        """Total number of pages."""
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


@dataclass
class FundSummary:
    """Balances of the internal funds with a breakdown per entry type."""

    balances: dict[str, Decimal]
    entry_totals: dict[tuple[str, str], Decimal]


@dataclass
class AuditResult:
    """Outcome of a ledger audit."""

    subject: str
    checked: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the audit found no violations."""
        return not self.errors


class ReportingService:
    """Read-only ledger queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize reporting service."""
        self.session = session
        self.user_repo = UserRepository(session)
        self.points_repo = PointsTransactionRepository(session)
        self.commission_repo = CommissionTransactionRepository(session)
        self.fund_repo = InternalFundRepository(session)

    async def get_points_history(
        self,
        user_id: int,
        page: int = 1,
        per_page: int = 20,
        type: PointsTransactionType | None = None,
    ) -> Page[PointsTransaction]:
        """Get a user's points ledger page, newest first."""
        items, total = await self.points_repo.get_user_history(
            user_id, page=page, per_page=per_page, type=type
        )
        return Page(items=items, total=total, page=page, per_page=per_page)

    async def get_commission_history(
        self,
        user_id: int,
        as_recipient: bool = True,
        page: int = 1,
        per_page: int = 20,
    ) -> Page[CommissionTransaction]:
        """
        Get commission transactions of a user, newest first.

        Args:
            user_id: User ID
            as_recipient: Transactions that credited the user, otherwise
                orders the user purchased
            page: Page number (1-indexed)
            per_page: Items per page
        """
        if as_recipient:
            items, total = await self.commission_repo.get_by_recipient(
                user_id, page=page, per_page=per_page
            )
        else:
            items, total = await self.commission_repo.get_by_purchaser(
                user_id, page=page, per_page=per_page
            )
        return Page(items=items, total=total, page=page, per_page=per_page)

    async def get_fund_summary(self) -> FundSummary:
        """Get Trust and Development fund balances."""
        return FundSummary(
            balances=await self.fund_repo.get_balances(),
            entry_totals=await self.fund_repo.get_entry_totals(),
        )

    async def get_capabilities(self, user_id: int) -> PointsCapabilities:
        """
        Project what a user's points could buy right now.

        Raises:
            UserNotFoundError: If the user does not exist
            ValidationError: If the user is virtual
        """
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if not isinstance(user, RealUser):
            raise ValidationError(f"User {user_id} is virtual and holds no points")

        snapshot = await load_settings_snapshot(self.session)
        return project_capabilities(
            points_wallet=user.points_wallet,
            virtual_referrals_created=user.virtual_referrals_created,
            snapshot=snapshot,
        )

    async def audit_points_chain(self, user_id: int) -> AuditResult:
        """
        Verify a user's points ledger chain.

        Checks balance_after[n] == balance_after[n-1] + points[n] for every
        entry and that the last balance equals the live points wallet.
        """
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        await self.session.refresh(user)

        result = AuditResult(subject=f"points:{user_id}")
        entries = await self.points_repo.get_user_entries(user_id)

        balance = 0
        for entry in entries:
            result.checked += 1
            if entry.balance_after != balance + entry.points:
                result.errors.append(
                    f"Entry {entry.id}: balance_after {entry.balance_after} != "
                    f"{balance} + {entry.points}"
                )
            balance = entry.balance_after

        if balance != user.points_wallet:
            result.errors.append(
                f"Ledger balance {balance} != points_wallet {user.points_wallet}"
            )

        if not result.ok:
            logger.error(
                f"Points ledger audit failed for user {user_id}: {result.errors}"
            )
        return result

    async def audit_commission(self, order_id: str) -> AuditResult:
        """
        Verify the allocation invariant of a processed order.

        direct + sum(tree shares) + trust + development must equal
        order_amount * total_allocation_percent / 100 within the
        allocation epsilon, using the settings version the order used,
        and the order's fund entries must add up to its fund shares.
        """
        result = AuditResult(subject=f"commission:{order_id}")
        transaction = await self.commission_repo.get_by_order_id(order_id)
        if transaction is None:
            result.errors.append(f"Order {order_id} has no commission transaction")
            return result
        if not transaction.is_completed:
            result.errors.append(
                f"Order {order_id} is {transaction.status}, not completed"
            )
            return result

        result.checked = 1
        trust = to_decimal(transaction.trust_fund_amount)
        development = to_decimal(transaction.development_fund_amount)
        allocated = (
            to_decimal(transaction.direct_commission_amount)
            + to_decimal(transaction.tree_commission_total)
            + trust
            + development
        )

        total_percent = await self._total_allocation_percent(
            transaction.settings_version
        )
        expected = money(
            to_decimal(transaction.order_amount) * total_percent / HUNDRED
        )
        if abs(allocated - expected) > settings.allocation_epsilon:
            result.errors.append(
                f"Allocated {allocated} != expected {expected}"
            )

        # Fund entries of the order must add up to the recorded fund shares
        credited = {fund_type.value: Decimal("0") for fund_type in FundType}
        for entry in await self.fund_repo.get_order_entries(order_id):
            credited[entry.fund_type] += to_decimal(entry.amount)
        for fund_type, recorded in (
            (FundType.TRUST.value, trust),
            (FundType.DEVELOPMENT.value, development),
        ):
            if abs(credited[fund_type] - recorded) > settings.allocation_epsilon:
                result.errors.append(
                    f"{fund_type} entries {credited[fund_type]} != "
                    f"recorded {recorded}"
                )

        if not result.ok:
            logger.error(
                f"Commission audit failed for order {order_id}: {result.errors}"
            )
        return result

    async def _total_allocation_percent(self, version: int | None) -> Decimal:
        """Total allocation percent of a settings version."""
        repo = ProgramSettingsRepository(self.session)
        program_settings = (
            await repo.get_by_version(version) if version is not None
            else await repo.get_current()
        )
        if program_settings is None:
            raise ValidationError(f"Settings version {version} not found")
        return to_decimal(program_settings.total_allocation_percent)
